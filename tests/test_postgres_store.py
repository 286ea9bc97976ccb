"""
PostgresStore against a scripted fake connection (no database required).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, List, Optional

import pytest
from psycopg import errors as pg_errors

from arcade.auth.models import Account
from arcade.storage.base import DuplicateKey
from arcade.storage.postgres_store import PostgresStore

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class _SteamIdTaken(pg_errors.UniqueViolation):
    diag = SimpleNamespace(constraint_name="accounts_steam_id_key")


class _Cursor:
    def __init__(self, row: Optional[tuple] = None, rowcount: int = 0) -> None:
        self._row = row
        self.rowcount = rowcount

    def fetchone(self):
        return self._row

    def fetchall(self):
        return [self._row] if self._row else []


class _FakeConn:
    def __init__(self, results: Optional[List[Any]] = None) -> None:
        self.results = list(results or [])
        self.executed: List[str] = []
        self.transactions = 0

    def execute(self, sql: str, params=None):
        self.executed.append(" ".join(sql.split()))
        result = self.results.pop(0) if self.results else _Cursor()
        if isinstance(result, Exception):
            raise result
        return result

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _account_row(account_id: str = "a1", steam_id: str = "76561197960287930") -> tuple:
    return (account_id, None, None, steam_id, NOW, NOW)


def _store(conn: _FakeConn):
    opened: List[str] = []

    def connect(dsn):
        opened.append(dsn)
        return conn

    return PostgresStore("postgresql://test", connect=connect), opened


def _candidate(account_id: str = "new") -> Account:
    return Account(id=account_id, email=None, password_hash=None, steam_id="76561197960287930", created_at=NOW, updated_at=NOW)


def test_get_account_maps_row() -> None:
    conn = _FakeConn([_Cursor(_account_row())])
    store, _ = _store(conn)
    account = store.get_account("a1")
    assert account.id == "a1"
    assert account.steam_id == "76561197960287930"
    assert "FROM accounts WHERE id = %s" in conn.executed[0]


def test_unique_violation_maps_to_duplicate_key_field() -> None:
    conn = _FakeConn([_SteamIdTaken()])
    store, _ = _store(conn)
    with pytest.raises(DuplicateKey) as e:
        store.set_steam_id("a1", "76561197960287930", NOW)
    assert e.value.field == "steam_id"


def test_insert_or_get_returns_inserted_row() -> None:
    conn = _FakeConn([_Cursor(_account_row("new"))])
    store, _ = _store(conn)
    assert store.insert_or_get_by_steam_id(_candidate()).id == "new"
    assert "ON CONFLICT (steam_id) DO NOTHING" in conn.executed[0]
    assert len(conn.executed) == 1


def test_insert_or_get_rereads_existing_owner_on_conflict() -> None:
    conn = _FakeConn([_Cursor(None), _Cursor(_account_row("owner"))])
    store, _ = _store(conn)
    assert store.insert_or_get_by_steam_id(_candidate()).id == "owner"
    assert "WHERE steam_id = %s" in conn.executed[1]


def test_transaction_shares_one_connection() -> None:
    conn = _FakeConn([_Cursor(_account_row()), _Cursor(None), _Cursor(None)])
    store, opened = _store(conn)
    with store.transaction():
        store.get_account("a1")
        store.touch_session("h", NOW)
        store.delete_session("h")
    assert len(opened) == 1
    assert len(conn.executed) == 3


def test_calls_outside_transaction_open_their_own_connection() -> None:
    conn = _FakeConn()
    store, opened = _store(conn)
    store.delete_session("h1")
    store.delete_session("h2")
    assert len(opened) == 2


def test_delete_expired_sessions_returns_rowcount() -> None:
    conn = _FakeConn([_Cursor(rowcount=3)])
    store, _ = _store(conn)
    assert store.delete_expired_sessions(NOW) == 3
    assert "expires_at <= %s" in conn.executed[0]
