"""
Pytest config.

Pins the repo root on sys.path so `import arcade` works without installing the
package, and provides services wired over the in-process store with a fake Steam
provider and a controllable clock.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from arcade.api.services import AuthServices, build_services  # noqa: E402
from arcade.auth.config import AuthConfig, load_auth_config  # noqa: E402
from arcade.auth.errors import UpstreamProviderError  # noqa: E402
from arcade.providers.steam_provider import DefaultSteamProvider  # noqa: E402
from arcade.storage.memory_store import MemoryStore  # noqa: E402

STEAM_ID = "76561197960287930"
OTHER_STEAM_ID = "76561198000000001"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class FakeSteamProvider(DefaultSteamProvider):
    """Real URL building; canned verification and owned-games responses."""

    def __init__(self, cfg: AuthConfig) -> None:
        super().__init__(cfg)
        self.valid = True
        self.verify_error: Optional[Exception] = None
        self.games: List[Dict[str, Any]] = [
            {"appid": 620, "name": "Portal 2", "playtime_forever": 120, "img_logo_url": "abc"},
            {"appid": 440, "name": "Team Fortress 2", "playtime_forever": 0},
        ]
        self.games_error: Optional[Exception] = None
        self.verified: List[Dict[str, str]] = []

    def verify_assertion(self, params: Mapping[str, str]) -> bool:
        self.verified.append(dict(params))
        if self.verify_error is not None:
            raise self.verify_error
        return self.valid

    def get_owned_games(self, steam_id: str) -> List[Dict[str, Any]]:
        if self.games_error is not None:
            raise self.games_error
        return list(self.games)


def callback_params(state: str, steam_id: str = STEAM_ID) -> Dict[str, str]:
    return {
        "state": state,
        "openid.ns": "http://specs.openid.net/auth/2.0",
        "openid.mode": "id_res",
        "openid.return_to": f"http://localhost:4000/auth/steam/callback?state={state}",
        "openid.claimed_id": f"https://steamcommunity.com/openid/id/{steam_id}",
        "openid.identity": f"https://steamcommunity.com/openid/id/{steam_id}",
        "openid.sig": "c2lnbmF0dXJl",
    }


def state_from_url(url: str) -> str:
    from urllib.parse import parse_qs, urlparse

    return_to = parse_qs(urlparse(url).query)["openid.return_to"][0]
    return parse_qs(urlparse(return_to).query)["state"][0]


@pytest.fixture
def auth_cfg(monkeypatch: pytest.MonkeyPatch) -> AuthConfig:
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("APP_BASE_URL", "http://localhost:4000")
    monkeypatch.setenv("FRONTEND_BASE_URL", "http://localhost:1420")
    monkeypatch.setenv("STEAM_API_KEY", "test-steam-key")
    load_auth_config.cache_clear()
    cfg = load_auth_config()
    yield cfg
    load_auth_config.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def steam(auth_cfg: AuthConfig) -> FakeSteamProvider:
    return FakeSteamProvider(auth_cfg)


@pytest.fixture
def services(auth_cfg: AuthConfig, store: MemoryStore, steam: FakeSteamProvider, clock: FakeClock) -> AuthServices:
    return build_services(auth_cfg, store, provider=steam, clock=clock)


@pytest.fixture
def client(services: AuthServices):
    from fastapi.testclient import TestClient

    from arcade.api.server import create_app

    return TestClient(create_app(services))


@pytest.fixture
def upstream_error() -> UpstreamProviderError:
    return UpstreamProviderError("Steam OpenID verification failed")
