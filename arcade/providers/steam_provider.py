"""
Steam provider: OpenID 2.0 login handshake and the Web API owned-games call.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Protocol
from urllib.parse import urlencode

import requests

from arcade.auth.config import AuthConfig
from arcade.auth.errors import MissingConfiguration, UpstreamProviderError

logger = logging.getLogger(__name__)

STEAM_OPENID_ENDPOINT = "https://steamcommunity.com/openid/login"
STEAM_WEB_API_ENDPOINT = "https://api.steampowered.com/IPlayerService/GetOwnedGames/v1/"
OPENID_NS = "http://specs.openid.net/auth/2.0"
OPENID_IDENTIFIER_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"


class SteamProvider(Protocol):
    """Protocol for the Steam endpoints the auth core calls."""

    def build_authorization_url(self, return_to: str, realm: str) -> str:
        """
        Build the OpenID `checkid_setup` URL the user is sent to.

        Args:
            return_to: Callback URL (carries the pending state)
            realm: Trust root shown to the user by Steam
        """
        ...

    def verify_assertion(self, params: Mapping[str, str]) -> bool:
        """
        Replay the callback parameters to Steam in `check_authentication` mode.

        Returns:
            True if Steam confirms the assertion

        Raises:
            UpstreamProviderError: transport failure or non-2xx response
        """
        ...

    def get_owned_games(self, steam_id: str) -> List[Dict[str, Any]]:
        """
        List games owned by a Steam account.

        Returns:
            Raw game dicts with keys appid, name, playtime_forever, img_logo_url

        Raises:
            MissingConfiguration: STEAM_API_KEY is not set
            UpstreamProviderError: transport failure or non-2xx response
        """
        ...


class DefaultSteamProvider:
    def __init__(self, cfg: AuthConfig) -> None:
        self.api_key = cfg.steam_api_key
        self.include_played_free_games = cfg.steam_include_played_free_games
        self.timeout = cfg.provider_timeout_seconds

    def build_authorization_url(self, return_to: str, realm: str) -> str:
        params = {
            "openid.ns": OPENID_NS,
            "openid.mode": "checkid_setup",
            "openid.return_to": return_to,
            "openid.realm": realm,
            "openid.identity": OPENID_IDENTIFIER_SELECT,
            "openid.claimed_id": OPENID_IDENTIFIER_SELECT,
        }
        return f"{STEAM_OPENID_ENDPOINT}?{urlencode(params)}"

    def verify_assertion(self, params: Mapping[str, str]) -> bool:
        payload = dict(params)
        payload["openid.mode"] = "check_authentication"
        try:
            r = requests.post(
                STEAM_OPENID_ENDPOINT,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Steam OpenID verification request failed: %s", type(e).__name__)
            raise UpstreamProviderError("Steam OpenID verification failed") from e
        if r.status_code >= 400:
            logger.warning("Steam OpenID verification returned status=%d", r.status_code)
            raise UpstreamProviderError("Steam OpenID verification failed")
        return "is_valid:true" in (r.text or "")

    def get_owned_games(self, steam_id: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            raise MissingConfiguration("Missing STEAM_API_KEY configuration")

        params = {
            "key": self.api_key,
            "steamid": steam_id,
            "include_appinfo": "true",
            "include_played_free_games": "true" if self.include_played_free_games else "false",
            "format": "json",
        }
        try:
            r = requests.get(STEAM_WEB_API_ENDPOINT, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            # Never log the request URL: it carries the API key.
            logger.warning("Steam GetOwnedGames request failed: %s", type(e).__name__)
            raise UpstreamProviderError("Steam GetOwnedGames request failed") from e
        if r.status_code >= 400:
            logger.warning("Steam GetOwnedGames returned status=%d", r.status_code)
            raise UpstreamProviderError("Steam GetOwnedGames request failed")

        try:
            body = r.json()
        except ValueError as e:
            raise UpstreamProviderError("Steam GetOwnedGames returned invalid JSON") from e
        response = body.get("response") if isinstance(body, dict) else None
        games = response.get("games") if isinstance(response, dict) else None
        if not isinstance(games, list):
            return []
        return [g for g in games if isinstance(g, dict) and "appid" in g]
