from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from arcade.auth.config import AuthConfig
from arcade.auth.credentials import CredentialStore
from arcade.auth.errors import AccountNotFound
from arcade.auth.models import Account, SessionRecord
from arcade.auth.util import hash_token, random_token, utcnow
from arcade.storage.base import AuthStore

logger = logging.getLogger(__name__)

SESSION_TOKEN_BYTES = 32


class SessionManager:
    """
    Opaque bearer sessions.

    The raw token is returned once by `issue` and never stored; rows are keyed by its
    SHA-256. Validity is purely `now < expires_at`; there is no stored revoked flag.
    """

    def __init__(
        self,
        store: AuthStore,
        credentials: CredentialStore,
        *,
        ttl: timedelta,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._ttl = ttl
        self._clock = clock

    def issue(self, account_id: str) -> str:
        if self._credentials.find_account(account_id) is None:
            raise AccountNotFound()

        now = self._clock()
        token = random_token(SESSION_TOKEN_BYTES)
        self._store.insert_session(
            SessionRecord(
                token_hash=hash_token(token),
                account_id=account_id,
                created_at=now,
                expires_at=now + self._ttl,
                last_seen_at=now,
            )
        )
        return token

    def validate(self, token: Optional[str]) -> Optional[Account]:
        """Return the owning account, or None if the token is unknown or expired."""
        if not token:
            return None
        token_hash = hash_token(token)
        now = self._clock()
        session = self._store.get_session(token_hash)
        if session is None or not session.is_valid(now):
            return None

        account = self._credentials.find_account(session.account_id)
        if account is None:
            self._store.delete_session(token_hash)
            return None

        # Sliding activity marker only; expiry is unchanged.
        self._store.touch_session(token_hash, now)
        return account

    def revoke(self, token: Optional[str]) -> None:
        if not token:
            return
        self._store.delete_session(hash_token(token))

    def sweep_expired(self, now: Optional[datetime] = None) -> int:
        removed = self._store.delete_expired_sessions(now or self._clock())
        if removed:
            logger.info("Removed %d expired session(s)", removed)
        return removed


class SessionSweeper:
    """Daemon thread that periodically deletes expired sessions."""

    def __init__(self, sessions: SessionManager, interval_seconds: float) -> None:
        self._sessions = sessions
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="session-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self) -> None:
        while True:
            try:
                self._sessions.sweep_expired()
            except Exception:
                logger.exception("Session sweep failed")
            if self._stop.wait(self._interval):
                return


def session_cookie_kwargs(cfg: AuthConfig, value: str) -> dict:
    return {
        "key": cfg.session_cookie_name,
        "value": value,
        "max_age": cfg.session_ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }


def clear_session_cookie_kwargs(cfg: AuthConfig) -> dict:
    return {
        "key": cfg.session_cookie_name,
        "value": "",
        "max_age": 0,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
