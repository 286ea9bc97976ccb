from __future__ import annotations

import time
from datetime import timedelta

import pytest

from arcade.auth.errors import AccountNotFound
from arcade.auth.session import (
    SessionSweeper,
    clear_session_cookie_kwargs,
    session_cookie_kwargs,
)
from arcade.auth.util import hash_token


@pytest.fixture
def account(services):
    return services.credentials.create_account("player@example.com", "password123")


def test_issue_returns_opaque_token_and_stores_only_hash(services, store, account) -> None:
    token = services.sessions.issue(account.id)
    assert len(token) >= 43
    assert store.get_session(token) is None
    row = store.get_session(hash_token(token))
    assert row is not None
    assert row.account_id == account.id
    assert row.expires_at - row.created_at == timedelta(days=7)


def test_issue_tokens_are_unique(services, account) -> None:
    tokens = {services.sessions.issue(account.id) for _ in range(50)}
    assert len(tokens) == 50


def test_issue_for_unknown_account(services) -> None:
    with pytest.raises(AccountNotFound):
        services.sessions.issue("missing")


def test_validate_returns_account(services, account) -> None:
    token = services.sessions.issue(account.id)
    assert services.sessions.validate(token).id == account.id


@pytest.mark.parametrize("token", [None, "", "not-a-real-token"])
def test_validate_unknown_or_empty_token(services, account, token) -> None:
    assert services.sessions.validate(token) is None


def test_validate_expires_exactly_at_ttl(services, clock, account) -> None:
    token = services.sessions.issue(account.id)
    clock.advance(timedelta(days=7) - timedelta(seconds=1))
    assert services.sessions.validate(token) is not None
    clock.advance(timedelta(seconds=1))
    assert services.sessions.validate(token) is None


def test_validate_updates_last_seen_without_extending_expiry(services, store, clock, account) -> None:
    token = services.sessions.issue(account.id)
    before = store.get_session(hash_token(token))
    clock.advance(timedelta(days=3))
    services.sessions.validate(token)
    after = store.get_session(hash_token(token))
    assert after.last_seen_at == clock.now
    assert after.expires_at == before.expires_at


def test_validate_drops_session_of_deleted_account(services, store, account) -> None:
    token = services.sessions.issue(account.id)
    # Simulate the owning account disappearing underneath the session.
    store._accounts.pop(account.id)
    assert services.sessions.validate(token) is None
    assert store.get_session(hash_token(token)) is None


def test_revoke_is_idempotent(services, account) -> None:
    token = services.sessions.issue(account.id)
    services.sessions.revoke(token)
    services.sessions.revoke(token)
    services.sessions.revoke(None)
    assert services.sessions.validate(token) is None


def test_revoke_only_affects_one_session(services, account) -> None:
    a = services.sessions.issue(account.id)
    b = services.sessions.issue(account.id)
    services.sessions.revoke(a)
    assert services.sessions.validate(b) is not None


def test_sweep_expired_removes_only_expired(services, store, clock, account) -> None:
    old = services.sessions.issue(account.id)
    clock.advance(timedelta(days=5))
    fresh = services.sessions.issue(account.id)
    clock.advance(timedelta(days=3))
    assert services.sessions.sweep_expired() == 1
    assert store.get_session(hash_token(old)) is None
    assert store.get_session(hash_token(fresh)) is not None


def test_sweeper_runs_sweep_on_start(services, store, account, clock) -> None:
    token_hash = hash_token(services.sessions.issue(account.id))
    clock.advance(timedelta(days=8))
    sweeper = SessionSweeper(services.sessions, interval_seconds=3600)
    sweeper.start()
    try:
        deadline = time.time() + 2
        while time.time() < deadline and store.get_session(token_hash) is not None:
            time.sleep(0.01)
    finally:
        sweeper.stop()
    assert store.get_session(token_hash) is None


def test_cookie_kwargs(auth_cfg) -> None:
    kw = session_cookie_kwargs(auth_cfg, "tok")
    assert kw["key"] == "arcade_session"
    assert kw["value"] == "tok"
    assert kw["httponly"] is True
    assert kw["samesite"] == "lax"
    assert kw["path"] == "/"
    assert kw["max_age"] == 7 * 24 * 60 * 60
    assert kw["secure"] is False

    cleared = clear_session_cookie_kwargs(auth_cfg)
    assert cleared["value"] == "" and cleared["max_age"] == 0
