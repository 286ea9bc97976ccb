"""
HTTP API for accounts, sessions and the Steam login handshake.

Every error except on the Steam callback is rendered as
`{"error": {"code": ..., "message": ...}}`. The callback is a browser redirect, so
all of its outcomes are reported by redirecting to the frontend instead.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from arcade.api.services import AuthServices, build_services, build_store
from arcade.auth.config import AuthConfig, load_auth_config
from arcade.auth.deps import check_rate_limit, get_services, limit_auth, limit_steam, require_session
from arcade.auth.errors import AuthError, RateLimited, Unauthorized, ValidationFailed
from arcade.auth.models import Account, Linked
from arcade.auth.session import SessionSweeper, clear_session_cookie_kwargs, session_cookie_kwargs

logger = logging.getLogger(__name__)

_HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


class CredentialsRequest(BaseModel):
    email: str = Field(..., max_length=254)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("must be a valid email address")
        return v

    @field_validator("password")
    @classmethod
    def _password_bytes(cls, v: str) -> str:
        # bcrypt only accepts the first 72 bytes.
        if len(v.encode("utf-8")) > 72:
            raise ValueError("must be at most 72 bytes")
        return v


def frontend_callback_url(cfg: AuthConfig, params: Dict[str, Any]) -> str:
    query = {k: str(v) for k, v in params.items() if v is not None}
    return f"{cfg.frontend_callback_url}?{urlencode(query)}"


def _no_store(resp: Response) -> Response:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _user_response(cfg: AuthConfig, account: Account, token: str, status_code: int) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content={"user": account.to_public()})
    _no_store(resp)
    resp.set_cookie(**session_cookie_kwargs(cfg, token))
    return resp


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    _no_store(resp)
    return resp


def create_app(services: Optional[AuthServices] = None) -> FastAPI:
    """
    Build the API app.

    When `services` is omitted they are constructed on startup from the environment
    (Postgres if configured, otherwise the in-process store).
    """
    app = FastAPI(title="Arcade auth API")
    app.state.services = services
    app.state.sweeper = None

    @app.on_event("startup")
    def _startup_build_services() -> None:
        if app.state.services is None:
            from arcade.db.migrate import maybe_auto_migrate

            did_attempt, msg = maybe_auto_migrate()
            if did_attempt:
                logger.info("DB migrations: %s", msg)
            app.state.services = build_services(load_auth_config(), build_store())

        svc = app.state.services
        sweeper = SessionSweeper(svc.sessions, svc.cfg.session_sweep_interval_seconds)
        sweeper.start()
        app.state.sweeper = sweeper
        logger.info(
            "Auth config: cookie=%s ttl_days=%d cookie_secure=%s app_base_url=%s steam_api_key_set=%s",
            svc.cfg.session_cookie_name,
            svc.cfg.session_ttl_days,
            svc.cfg.cookie_secure,
            svc.cfg.app_base_url,
            bool(svc.cfg.steam_api_key),
        )

    @app.on_event("shutdown")
    def _shutdown_stop_sweeper() -> None:
        if app.state.sweeper is not None:
            app.state.sweeper.stop()
            app.state.sweeper = None

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all incoming HTTP requests."""
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
            raise
        process_time = time.time() - start_time
        logger.debug("%s %s - %d (%.3fs)", request.method, request.url.path, response.status_code, process_time)
        return response

    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        resp = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
        svc = app.state.services
        if isinstance(exc, Unauthorized) and svc is not None and svc.cfg.session_cookie_name in request.cookies:
            resp.set_cookie(**clear_session_cookie_kwargs(svc.cfg))
        return resp

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        message = None
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
            message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
        err = ValidationFailed(message)
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        return JSONResponse(status_code=exc.status_code, content={"error": {"code": code, "message": str(exc.detail)}})

    @app.exception_handler(Exception)
    async def _unhandled_error_handler(_request: Request, _exc: Exception) -> JSONResponse:
        # Already logged with traceback by log_requests; never echo internals to the client.
        return JSONResponse(
            status_code=500,
            content={"error": {"code": "INTERNAL_SERVER_ERROR", "message": "Unexpected server error"}},
        )

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    # ---- password accounts + sessions ----

    @app.post("/auth/register", dependencies=[Depends(limit_auth)])
    def register(body: CredentialsRequest, svc: AuthServices = Depends(get_services)) -> JSONResponse:
        account = svc.credentials.create_account(body.email, body.password)
        token = svc.sessions.issue(account.id)
        return _user_response(svc.cfg, account, token, 201)

    @app.post("/auth/login", dependencies=[Depends(limit_auth)])
    def login(body: CredentialsRequest, svc: AuthServices = Depends(get_services)) -> JSONResponse:
        try:
            account = svc.credentials.verify_credentials(body.email, body.password)
        except AuthError:
            logger.info("Login failed")
            raise
        token = svc.sessions.issue(account.id)
        return _user_response(svc.cfg, account, token, 200)

    @app.post("/auth/logout")
    def logout(
        request: Request,
        _account: Account = Depends(require_session),
        svc: AuthServices = Depends(get_services),
    ) -> Response:
        svc.sessions.revoke(request.state.session_token)
        resp = Response(status_code=204)
        _no_store(resp)
        resp.set_cookie(**clear_session_cookie_kwargs(svc.cfg))
        return resp

    @app.get("/auth/session")
    def current_session(account: Account = Depends(require_session)) -> JSONResponse:
        return _no_store(JSONResponse(content={"user": account.to_public()}))

    # ---- Steam OpenID handshake ----

    @app.get("/auth/steam/start", dependencies=[Depends(limit_steam)])
    def steam_start(
        account: Account = Depends(require_session),
        svc: AuthServices = Depends(get_services),
    ) -> JSONResponse:
        return _no_store(JSONResponse(content=svc.broker.start(account.id)))

    @app.get("/auth/steam/callback")
    def steam_callback(request: Request, svc: AuthServices = Depends(get_services)) -> RedirectResponse:
        """
        Finish the Steam login and redirect the browser to the frontend.

        Runs in a worker thread: once started it completes even if the client goes
        away, so the pending state is consumed exactly once.
        """
        cfg = svc.cfg
        try:
            check_rate_limit(svc.steam_limiter, "steam", request)
            result = svc.broker.complete(dict(request.query_params))
        except RateLimited as e:
            return _redirect(frontend_callback_url(cfg, {"status": "error", "message": e.message}))
        except Exception:
            logger.exception("Steam callback failed")
            return _redirect(frontend_callback_url(cfg, {"status": "error", "message": "Steam callback failed"}))

        if isinstance(result, Linked):
            resp = _redirect(
                frontend_callback_url(
                    cfg,
                    {
                        "status": "success",
                        "userId": result.account_id,
                        "steamId": result.steam_id,
                        "syncedGames": result.synced_games,
                    },
                )
            )
            resp.set_cookie(**session_cookie_kwargs(cfg, result.session_token))
            return resp

        return _redirect(frontend_callback_url(cfg, {"status": "error", "message": result.reason}))

    # ---- Steam catalog ----

    @app.post("/integrations/steam/sync", dependencies=[Depends(limit_steam)])
    def steam_sync(
        account: Account = Depends(require_session),
        svc: AuthServices = Depends(get_services),
    ) -> JSONResponse:
        synced = svc.library.sync_account(account.id)
        return JSONResponse(status_code=202, content={"userId": account.id, "provider": "steam", "syncedGames": synced})

    @app.get("/integrations/steam/status", dependencies=[Depends(limit_steam)])
    def steam_status(
        account: Account = Depends(require_session),
        svc: AuthServices = Depends(get_services),
    ) -> Dict[str, Any]:
        return {"userId": account.id, "provider": "steam", **svc.library.link_status(account.id)}

    return app


def run(host: str = "0.0.0.0", port: int = 4000) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info("Starting auth API on %s:%d (log_level=%s)", host, port, log_level)
    uvicorn.run(create_app(), host=host, port=port, log_level=uvicorn_log_level)
