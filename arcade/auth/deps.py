from __future__ import annotations

from fastapi import Depends, Request

from arcade.api.services import AuthServices
from arcade.auth.errors import RateLimited, Unauthorized
from arcade.auth.models import Account
from arcade.auth.rate_limit import RateLimiter


def get_services(request: Request) -> AuthServices:
    return request.app.state.services


def client_key(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def require_session(request: Request, services: AuthServices = Depends(get_services)) -> Account:
    """
    Resolve the session cookie to an account or fail with 401.

    Stores the account and raw token on `request.state` for handlers that need them.
    """
    token = (request.cookies.get(services.cfg.session_cookie_name) or "").strip()
    if not token:
        raise Unauthorized()

    account = services.sessions.validate(token)
    if account is None:
        raise Unauthorized("Session expired or invalid")

    request.state.user = account
    request.state.session_token = token
    return account


def check_rate_limit(limiter: RateLimiter, bucket: str, request: Request) -> None:
    allowed, _remaining = limiter.check_and_increment(f"{bucket}:{client_key(request)}")
    if not allowed:
        raise RateLimited()


def limit_auth(request: Request, services: AuthServices = Depends(get_services)) -> None:
    check_rate_limit(services.auth_limiter, "auth", request)


def limit_steam(request: Request, services: AuthServices = Depends(get_services)) -> None:
    check_rate_limit(services.steam_limiter, "steam", request)
