from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if raw in ("1", "true", "yes", "y", "on"):
        return True
    if raw in ("0", "false", "no", "n", "off"):
        return False
    return default


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(float(raw))
    except ValueError:
        return default
    return max(value, minimum)


@dataclass(frozen=True)
class AuthConfig:
    # Session cookie
    session_cookie_name: str
    session_ttl_days: int
    cookie_secure: bool
    session_sweep_interval_seconds: int

    # Steam (OpenID 2.0 login + Web API for owned games)
    steam_api_key: str
    steam_include_played_free_games: bool
    provider_timeout_seconds: float

    # URLs used for the OpenID realm/return_to and the frontend redirect
    app_base_url: str
    frontend_base_url: str
    frontend_steam_callback_path: str

    # Rate limiting of sensitive endpoints
    rate_limit_window_seconds: int
    rate_limit_max_auth: int
    rate_limit_max_steam: int

    bcrypt_rounds: int

    @property
    def session_ttl_seconds(self) -> int:
        return self.session_ttl_days * 24 * 60 * 60

    @property
    def steam_callback_url(self) -> str:
        return f"{self.app_base_url}/auth/steam/callback"

    @property
    def frontend_callback_url(self) -> str:
        path = self.frontend_steam_callback_path or "/"
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.frontend_base_url}{path}"


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    Cookie security defaults to on when APP_BASE_URL is https; SESSION_COOKIE_SECURE
    overrides it either way.
    """
    app_base_url = (os.getenv("APP_BASE_URL", "") or "").strip().rstrip("/") or "http://localhost:4000"
    frontend_base_url = (os.getenv("FRONTEND_BASE_URL", "") or "").strip().rstrip("/") or "http://localhost:1420"

    return AuthConfig(
        session_cookie_name=(os.getenv("SESSION_COOKIE_NAME", "") or "").strip() or "arcade_session",
        session_ttl_days=_env_int("SESSION_TTL_DAYS", 7),
        cookie_secure=_env_bool("SESSION_COOKIE_SECURE", app_base_url.startswith("https://")),
        session_sweep_interval_seconds=_env_int("SESSION_SWEEP_INTERVAL_SECONDS", 3600, minimum=60),
        steam_api_key=(os.getenv("STEAM_API_KEY", "") or "").strip(),
        steam_include_played_free_games=_env_bool("STEAM_SYNC_INCLUDE_PLAYED_FREE_GAMES", True),
        provider_timeout_seconds=float(_env_int("PROVIDER_TIMEOUT_SECONDS", 10)),
        app_base_url=app_base_url,
        frontend_base_url=frontend_base_url,
        frontend_steam_callback_path=(os.getenv("FRONTEND_STEAM_CALLBACK_PATH", "") or "").strip()
        or "/auth/steam/callback",
        rate_limit_window_seconds=_env_int("RATE_LIMIT_WINDOW_SECONDS", 900),
        rate_limit_max_auth=_env_int("RATE_LIMIT_MAX_AUTH", 20),
        rate_limit_max_steam=_env_int("RATE_LIMIT_MAX_STEAM", 30),
        # bcrypt rejects cost factors below 4.
        bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12, minimum=4),
    )
