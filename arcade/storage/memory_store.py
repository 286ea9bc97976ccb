"""In-process storage for development and tests (fallback when Postgres is not configured)."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from arcade.auth.models import Account, GameRecord, SessionRecord
from arcade.storage.base import DuplicateKey


class MemoryStore:
    """
    Thread-safe in-memory implementation of the AuthStore interface.

    A single re-entrant lock guards every table. `transaction()` holds the lock for
    the whole block and restores a snapshot if the block raises, so grouped writes
    are all-or-nothing and never observed half-applied.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._depth = 0
        self._accounts: Dict[str, Account] = {}
        self._by_email: Dict[str, str] = {}
        self._by_steam_id: Dict[str, str] = {}
        self._sessions: Dict[str, SessionRecord] = {}
        self._games: Dict[Tuple[str, str], List[GameRecord]] = {}

    def _snapshot(self) -> tuple:
        return (
            dict(self._accounts),
            dict(self._by_email),
            dict(self._by_steam_id),
            dict(self._sessions),
            dict(self._games),
        )

    def _restore(self, snap: tuple) -> None:
        self._accounts, self._by_email, self._by_steam_id, self._sessions, self._games = snap

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snap = self._snapshot()
            self._depth = 1
            try:
                yield
            except BaseException:
                self._restore(snap)
                raise
            finally:
                self._depth = 0

    # ---- accounts ----

    def insert_account(self, account: Account) -> None:
        with self._lock:
            if account.email is not None and account.email in self._by_email:
                raise DuplicateKey("email")
            if account.steam_id is not None and account.steam_id in self._by_steam_id:
                raise DuplicateKey("steam_id")
            self._accounts[account.id] = account
            if account.email is not None:
                self._by_email[account.email] = account.id
            if account.steam_id is not None:
                self._by_steam_id[account.steam_id] = account.id

    def insert_or_get_by_steam_id(self, account: Account) -> Account:
        if account.steam_id is None:
            raise ValueError("insert_or_get_by_steam_id requires steam_id")
        with self._lock:
            existing_id = self._by_steam_id.get(account.steam_id)
            if existing_id is not None:
                return self._accounts[existing_id]
            self.insert_account(account)
            return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._lock:
            return self._accounts.get(account_id)

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._lock:
            account_id = self._by_email.get(email)
            return self._accounts.get(account_id) if account_id else None

    def get_account_by_steam_id(self, steam_id: str) -> Optional[Account]:
        with self._lock:
            account_id = self._by_steam_id.get(steam_id)
            return self._accounts.get(account_id) if account_id else None

    def set_steam_id(self, account_id: str, steam_id: str, updated_at: datetime) -> Optional[Account]:
        with self._lock:
            current = self._accounts.get(account_id)
            if current is None:
                return None
            owner = self._by_steam_id.get(steam_id)
            if owner is not None and owner != account_id:
                raise DuplicateKey("steam_id")
            if current.steam_id is not None and current.steam_id != steam_id:
                self._by_steam_id.pop(current.steam_id, None)
            updated = replace(current, steam_id=steam_id, updated_at=updated_at)
            self._accounts[account_id] = updated
            self._by_steam_id[steam_id] = account_id
            return updated

    # ---- sessions ----

    def insert_session(self, session: SessionRecord) -> None:
        with self._lock:
            if session.account_id not in self._accounts:
                # Mirrors the foreign key on sessions.account_id.
                raise KeyError(session.account_id)
            if session.token_hash in self._sessions:
                raise DuplicateKey("token_hash")
            self._sessions[session.token_hash] = session

    def get_session(self, token_hash: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(token_hash)

    def touch_session(self, token_hash: str, last_seen_at: datetime) -> None:
        with self._lock:
            current = self._sessions.get(token_hash)
            if current is not None:
                self._sessions[token_hash] = replace(current, last_seen_at=last_seen_at)

    def delete_session(self, token_hash: str) -> None:
        with self._lock:
            self._sessions.pop(token_hash, None)

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._lock:
            expired = [h for h, s in self._sessions.items() if s.expires_at <= now]
            for h in expired:
                del self._sessions[h]
            return len(expired)

    # ---- games ----

    def replace_provider_games(self, account_id: str, provider: str, games: List[GameRecord]) -> None:
        with self.transaction():
            if account_id not in self._accounts:
                raise KeyError(account_id)
            deduped: Dict[str, GameRecord] = {}
            for g in games:
                deduped[g.external_id] = g
            self._games[(account_id, provider)] = list(deduped.values())

    def count_games(self, account_id: str, provider: str) -> int:
        with self._lock:
            return len(self._games.get((account_id, provider), []))
