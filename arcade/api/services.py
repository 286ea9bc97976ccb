from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from arcade.auth.broker import FederatedIdentityBroker
from arcade.auth.config import AuthConfig
from arcade.auth.credentials import CredentialStore
from arcade.auth.pending import PendingStateRegistry
from arcade.auth.rate_limit import RateLimiter
from arcade.auth.session import SessionManager
from arcade.auth.util import utcnow
from arcade.library.sync import SteamLibrarySync
from arcade.providers.steam_provider import DefaultSteamProvider, SteamProvider
from arcade.storage.base import AuthStore

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Components built once at startup and shared by every request handler."""

    cfg: AuthConfig
    store: AuthStore
    credentials: CredentialStore
    sessions: SessionManager
    pending: PendingStateRegistry
    provider: SteamProvider
    library: SteamLibrarySync
    broker: FederatedIdentityBroker
    auth_limiter: RateLimiter
    steam_limiter: RateLimiter


def build_services(
    cfg: AuthConfig,
    store: AuthStore,
    *,
    provider: Optional[SteamProvider] = None,
    clock: Callable[[], datetime] = utcnow,
) -> AuthServices:
    provider = provider or DefaultSteamProvider(cfg)
    credentials = CredentialStore(store, bcrypt_rounds=cfg.bcrypt_rounds, clock=clock)
    sessions = SessionManager(store, credentials, ttl=timedelta(days=cfg.session_ttl_days), clock=clock)
    pending = PendingStateRegistry(clock=clock)
    library = SteamLibrarySync(store, credentials, provider, clock=clock)
    broker = FederatedIdentityBroker(
        cfg,
        store=store,
        credentials=credentials,
        sessions=sessions,
        pending=pending,
        provider=provider,
        library=library,
    )
    return AuthServices(
        cfg=cfg,
        store=store,
        credentials=credentials,
        sessions=sessions,
        pending=pending,
        provider=provider,
        library=library,
        broker=broker,
        auth_limiter=RateLimiter(cfg.rate_limit_max_auth, cfg.rate_limit_window_seconds, clock=clock),
        steam_limiter=RateLimiter(cfg.rate_limit_max_steam, cfg.rate_limit_window_seconds, clock=clock),
    )


def build_store() -> AuthStore:
    """PostgreSQL when configured; otherwise the in-process store (data lost on restart)."""
    from arcade.db.config import load_db_config

    dsn = load_db_config().dsn
    if dsn:
        from arcade.storage.postgres_store import PostgresStore

        return PostgresStore(dsn)

    from arcade.storage.memory_store import MemoryStore

    logger.warning("Postgres not configured; using in-process store (accounts and sessions are not persisted)")
    return MemoryStore()
