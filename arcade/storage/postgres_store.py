"""PostgreSQL storage for accounts, sessions and synced games (psycopg 3)."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Optional, Sequence

from arcade.auth.models import Account, GameRecord, SessionRecord
from arcade.storage.base import DuplicateKey

_ACCOUNT_COLUMNS = "id, email, password_hash, steam_id, created_at, updated_at"
_SESSION_COLUMNS = "token_hash, account_id, created_at, expires_at, last_seen_at"

# Unique constraint names from 001_accounts_sessions.sql.
_CONSTRAINT_FIELDS = {
    "accounts_pkey": "id",
    "accounts_email_key": "email",
    "accounts_steam_id_key": "steam_id",
    "sessions_pkey": "token_hash",
}


def _connect(dsn: str):
    # Lazy import so the server can run on the in-process store without DB deps.
    import psycopg  # type: ignore[import-not-found]

    return psycopg.connect(dsn)


def _unique_violation_type():
    from psycopg import errors  # type: ignore[import-not-found]

    return errors.UniqueViolation


def _row_to_account(row: Sequence[Any]) -> Account:
    account_id, email, password_hash, steam_id, created_at, updated_at = row
    return Account(
        id=str(account_id),
        email=email,
        password_hash=password_hash,
        steam_id=steam_id,
        created_at=created_at,
        updated_at=updated_at,
    )


def _row_to_session(row: Sequence[Any]) -> SessionRecord:
    token_hash, account_id, created_at, expires_at, last_seen_at = row
    return SessionRecord(
        token_hash=token_hash,
        account_id=str(account_id),
        created_at=created_at,
        expires_at=expires_at,
        last_seen_at=last_seen_at,
    )


class PostgresStore:
    """
    AuthStore backed by PostgreSQL.

    Each call runs in its own connection and transaction unless the calling thread
    is inside `transaction()`, in which case it joins that connection. Unique
    violations are caught inside a savepoint so the enclosing transaction survives.
    """

    def __init__(self, dsn: str, connect=_connect) -> None:
        self._dsn = dsn
        self._connect = connect
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        current = getattr(self._local, "conn", None)
        if current is not None:
            with current.transaction():
                yield
            return

        with self._connect(self._dsn) as conn:
            self._local.conn = conn
            try:
                with conn.transaction():
                    yield
            finally:
                self._local.conn = None

    @contextmanager
    def _conn(self) -> Iterator[Any]:
        current = getattr(self._local, "conn", None)
        if current is not None:
            yield current
            return
        with self._connect(self._dsn) as conn:
            with conn.transaction():
                yield conn

    def _execute_unique(self, conn, sql: str, params: Sequence[Any]):
        """Run a write inside a savepoint, translating unique violations to DuplicateKey."""
        unique_violation = _unique_violation_type()
        try:
            with conn.transaction():
                return conn.execute(sql, params)
        except unique_violation as e:
            constraint = getattr(getattr(e, "diag", None), "constraint_name", None) or ""
            raise DuplicateKey(_CONSTRAINT_FIELDS.get(constraint, constraint or "unknown")) from e

    # ---- accounts ----

    def insert_account(self, account: Account) -> None:
        with self._conn() as conn:
            self._execute_unique(
                conn,
                f"""
                INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s);
                """,
                (
                    account.id,
                    account.email,
                    account.password_hash,
                    account.steam_id,
                    account.created_at,
                    account.updated_at,
                ),
            )

    def insert_or_get_by_steam_id(self, account: Account) -> Account:
        if account.steam_id is None:
            raise ValueError("insert_or_get_by_steam_id requires steam_id")
        with self._conn() as conn:
            row = conn.execute(
                f"""
                INSERT INTO accounts ({_ACCOUNT_COLUMNS})
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (steam_id) DO NOTHING
                RETURNING {_ACCOUNT_COLUMNS};
                """,
                (
                    account.id,
                    account.email,
                    account.password_hash,
                    account.steam_id,
                    account.created_at,
                    account.updated_at,
                ),
            ).fetchone()
            if row:
                return _row_to_account(row)

            # Conflict: another transaction owns this steam_id; ON CONFLICT waited for it to commit.
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE steam_id = %s;",
                (account.steam_id,),
            ).fetchone()
            if not row:
                raise RuntimeError("steam_id conflict reported but no owning account found")
            return _row_to_account(row)

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = %s;", (account_id,)).fetchone()
            return _row_to_account(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[Account]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s;", (email,)).fetchone()
            return _row_to_account(row) if row else None

    def get_account_by_steam_id(self, steam_id: str) -> Optional[Account]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE steam_id = %s;", (steam_id,)
            ).fetchone()
            return _row_to_account(row) if row else None

    def set_steam_id(self, account_id: str, steam_id: str, updated_at: datetime) -> Optional[Account]:
        with self._conn() as conn:
            row = self._execute_unique(
                conn,
                f"""
                UPDATE accounts
                SET steam_id = %s, updated_at = %s
                WHERE id = %s
                RETURNING {_ACCOUNT_COLUMNS};
                """,
                (steam_id, updated_at, account_id),
            ).fetchone()
            return _row_to_account(row) if row else None

    # ---- sessions ----

    def insert_session(self, session: SessionRecord) -> None:
        with self._conn() as conn:
            self._execute_unique(
                conn,
                f"""
                INSERT INTO sessions ({_SESSION_COLUMNS})
                VALUES (%s, %s, %s, %s, %s);
                """,
                (
                    session.token_hash,
                    session.account_id,
                    session.created_at,
                    session.expires_at,
                    session.last_seen_at,
                ),
            )

    def get_session(self, token_hash: str) -> Optional[SessionRecord]:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE token_hash = %s;", (token_hash,)
            ).fetchone()
            return _row_to_session(row) if row else None

    def touch_session(self, token_hash: str, last_seen_at: datetime) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE sessions SET last_seen_at = %s WHERE token_hash = %s;",
                (last_seen_at, token_hash),
            )

    def delete_session(self, token_hash: str) -> None:
        with self._conn() as conn:
            conn.execute("DELETE FROM sessions WHERE token_hash = %s;", (token_hash,))

    def delete_expired_sessions(self, now: datetime) -> int:
        with self._conn() as conn:
            cur = conn.execute("DELETE FROM sessions WHERE expires_at <= %s;", (now,))
            return int(cur.rowcount or 0)

    # ---- games ----

    def replace_provider_games(self, account_id: str, provider: str, games: List[GameRecord]) -> None:
        with self._conn() as conn:
            with conn.transaction():
                conn.execute(
                    "DELETE FROM games WHERE account_id = %s AND provider = %s;",
                    (account_id, provider),
                )
                for g in games:
                    conn.execute(
                        """
                        INSERT INTO games
                          (account_id, provider, external_id, name, playtime_minutes, artwork_url, last_synced_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (account_id, provider, external_id) DO UPDATE
                          SET name = EXCLUDED.name,
                              playtime_minutes = EXCLUDED.playtime_minutes,
                              artwork_url = EXCLUDED.artwork_url,
                              last_synced_at = EXCLUDED.last_synced_at;
                        """,
                        (
                            account_id,
                            provider,
                            g.external_id,
                            g.name,
                            g.playtime_minutes,
                            g.artwork_url,
                            g.last_synced_at,
                        ),
                    )

    def count_games(self, account_id: str, provider: str) -> int:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM games WHERE account_id = %s AND provider = %s;",
                (account_id, provider),
            ).fetchone()
            return int(row[0]) if row else 0
