from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

from arcade.auth.rate_limit import RateLimiter
from tests.conftest import STEAM_ID, callback_params, state_from_url


def _query(location: str) -> dict:
    parsed = urlparse(location)
    assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "http://localhost:1420/auth/steam/callback"
    return {k: v[0] for k, v in parse_qs(parsed.query).items()}


def _login(client) -> dict:
    r = client.post("/auth/register", json={"email": "player@example.com", "password": "password123"})
    assert r.status_code == 201
    return r.json()["user"]


def _start_state(client) -> str:
    r = client.get("/auth/steam/start")
    assert r.status_code == 200
    return state_from_url(r.json()["authorizationUrl"])


def test_register_then_link_steam_end_to_end(client) -> None:
    user = _login(client)
    state = _start_state(client)

    r = client.get("/auth/steam/callback", params=callback_params(state), follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["cache-control"] == "no-store"
    q = _query(r.headers["location"])
    assert q == {"status": "success", "userId": user["id"], "steamId": STEAM_ID, "syncedGames": "2"}
    assert "arcade_session=" in r.headers["set-cookie"]
    # The session token never appears in the redirect URL.
    assert client.cookies.get("arcade_session") not in r.headers["location"]

    me = client.get("/auth/session").json()["user"]
    assert me["steamLinked"] is True
    assert me["steamId"] == STEAM_ID

    status = client.get("/integrations/steam/status").json()
    assert status == {"userId": user["id"], "provider": "steam", "linked": True, "steamId": STEAM_ID, "gameCount": 2}


def test_start_requires_session(client) -> None:
    r = client.get("/auth/steam/start")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


def test_callback_with_unknown_state_redirects_with_error(client) -> None:
    r = client.get("/auth/steam/callback", params=callback_params("forged"), follow_redirects=False)
    assert r.status_code == 302
    q = _query(r.headers["location"])
    assert q == {"status": "error", "message": "Invalid or expired OpenID state"}
    assert "set-cookie" not in r.headers


def test_callback_replay_is_rejected(client) -> None:
    _login(client)
    params = callback_params(_start_state(client))
    first = client.get("/auth/steam/callback", params=params, follow_redirects=False)
    assert _query(first.headers["location"])["status"] == "success"
    second = client.get("/auth/steam/callback", params=params, follow_redirects=False)
    assert _query(second.headers["location"])["status"] == "error"


def test_callback_verification_failure(client, steam) -> None:
    _login(client)
    steam.valid = False
    r = client.get("/auth/steam/callback", params=callback_params(_start_state(client)), follow_redirects=False)
    assert _query(r.headers["location"]) == {"status": "error", "message": "Steam login verification failed"}


def test_callback_upstream_failure_redirects(client, steam, upstream_error) -> None:
    _login(client)
    steam.verify_error = upstream_error
    r = client.get("/auth/steam/callback", params=callback_params(_start_state(client)), follow_redirects=False)
    assert r.status_code == 302
    assert _query(r.headers["location"]) == {"status": "error", "message": "Steam OpenID verification failed"}


def test_callback_unexpected_failure_redirects_generic(client, services, monkeypatch) -> None:
    def _boom(_params):
        raise RuntimeError("internal detail")

    monkeypatch.setattr(services.broker, "complete", _boom)
    r = client.get("/auth/steam/callback", params=callback_params("s"), follow_redirects=False)
    assert r.status_code == 302
    assert _query(r.headers["location"]) == {"status": "error", "message": "Steam callback failed"}


def test_callback_rate_limited_redirects(client, services, clock) -> None:
    services.steam_limiter = RateLimiter(1, 900, clock=clock)
    client.get("/auth/steam/callback", params=callback_params("a"), follow_redirects=False)
    r = client.get("/auth/steam/callback", params=callback_params("b"), follow_redirects=False)
    q = _query(r.headers["location"])
    assert q["status"] == "error"
    assert q["message"].startswith("Too many requests")


def test_callback_conflicting_link(client, services) -> None:
    other = services.credentials.create_account("other@example.com", "password123")
    services.credentials.link_external_identity(other.id, STEAM_ID)

    _login(client)
    r = client.get("/auth/steam/callback", params=callback_params(_start_state(client)), follow_redirects=False)
    q = _query(r.headers["location"])
    assert q == {"status": "error", "message": "Steam account is already linked to another user"}


def test_sync_requires_linked_steam(client) -> None:
    _login(client)
    r = client.post("/integrations/steam/sync")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "STEAM_NOT_LINKED"


def test_sync_returns_accepted_with_count(client, steam) -> None:
    user = _login(client)
    client.get("/auth/steam/callback", params=callback_params(_start_state(client)), follow_redirects=False)

    steam.games = [{"appid": 570, "name": "Dota 2"}]
    r = client.post("/integrations/steam/sync")
    assert r.status_code == 202
    assert r.json() == {"userId": user["id"], "provider": "steam", "syncedGames": 1}


def test_sync_upstream_error_is_502(client, steam, upstream_error) -> None:
    _login(client)
    client.get("/auth/steam/callback", params=callback_params(_start_state(client)), follow_redirects=False)
    steam.games_error = upstream_error
    r = client.post("/integrations/steam/sync")
    assert r.status_code == 502
    assert r.json()["error"]["code"] == "UPSTREAM_PROVIDER_ERROR"


def test_pending_state_expires_between_start_and_callback(client, clock) -> None:
    _login(client)
    state = _start_state(client)
    clock.advance(timedelta(minutes=11))
    r = client.get("/auth/steam/callback", params=callback_params(state), follow_redirects=False)
    q = _query(r.headers["location"])
    assert q["status"] == "error"
