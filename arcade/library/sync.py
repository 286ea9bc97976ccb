"""
Catalog sync: replace an account's Steam games with the provider's current list.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from arcade.auth.credentials import CredentialStore
from arcade.auth.errors import SteamNotLinked
from arcade.auth.models import GameRecord
from arcade.auth.util import utcnow
from arcade.providers.steam_provider import SteamProvider
from arcade.storage.base import AuthStore

logger = logging.getLogger(__name__)

STEAM = "steam"


def _artwork_url(appid: int, logo_hash: Optional[str]) -> Optional[str]:
    if not logo_hash:
        return None
    return f"https://media.steampowered.com/steamcommunity/public/images/apps/{appid}/{logo_hash}.jpg"


def map_steam_game(raw: Dict[str, Any], synced_at: datetime) -> GameRecord:
    appid = int(raw["appid"])
    name = str(raw.get("name") or "").strip()
    try:
        playtime = int(raw.get("playtime_forever") or 0)
    except (TypeError, ValueError):
        playtime = 0
    return GameRecord(
        provider=STEAM,
        external_id=str(appid),
        name=name or f"Steam App {appid}",
        playtime_minutes=playtime,
        artwork_url=_artwork_url(appid, raw.get("img_logo_url")),
        last_synced_at=synced_at,
    )


class SteamLibrarySync:
    def __init__(
        self,
        store: AuthStore,
        credentials: CredentialStore,
        provider: SteamProvider,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._credentials = credentials
        self._provider = provider
        self._clock = clock

    def sync_account(self, account_id: str) -> int:
        """Fetch owned games from Steam and replace the stored list. Returns the game count."""
        account = self._credentials.get_account(account_id)
        if not account.steam_id:
            raise SteamNotLinked()

        # Network call happens before (and outside) the storage transaction.
        owned = self._provider.get_owned_games(account.steam_id)
        synced_at = self._clock()
        games: List[GameRecord] = []
        skipped = 0
        for raw in owned:
            try:
                games.append(map_steam_game(raw, synced_at))
            except (KeyError, TypeError, ValueError):
                skipped += 1
        if skipped:
            logger.warning("Skipped %d malformed Steam game row(s) for account %s", skipped, account_id)

        self._store.replace_provider_games(account_id, STEAM, games)
        logger.info("Synced %d Steam game(s) for account %s", len(games), account_id)
        return len(games)

    def link_status(self, account_id: str) -> Dict[str, Any]:
        account = self._credentials.get_account(account_id)
        return {
            "linked": account.steam_linked,
            "steamId": account.steam_id,
            "gameCount": self._store.count_games(account_id, STEAM),
        }
