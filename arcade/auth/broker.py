"""
Federated identity broker for Steam OpenID 2.0 logins.

Flow:
- start(): mint a single-use pending state and return the Steam authorization URL
  whose return_to carries the state.
- complete(): consume the state, verify the assertion with Steam, extract the
  SteamID64, link or create the account and issue a session in one storage
  transaction, then run a best-effort catalog sync.

Outcomes are returned as `Linked` or `Rejected`; the broker never builds frontend
URLs or performs transport I/O for error reporting.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Mapping, Optional
from urllib.parse import urlencode

from arcade.auth.config import AuthConfig
from arcade.auth.credentials import CredentialStore
from arcade.auth.errors import AuthError, AuthFailed, InvalidOrExpiredState, MalformedAssertion
from arcade.auth.models import CallbackResult, Linked, Rejected
from arcade.auth.pending import PendingStateRegistry
from arcade.auth.session import SessionManager
from arcade.library.sync import SteamLibrarySync
from arcade.providers.steam_provider import SteamProvider
from arcade.storage.base import AuthStore

logger = logging.getLogger(__name__)

STEAM_CLAIMED_ID_PATTERN = re.compile(r"^https?://steamcommunity\.com/openid/id/(\d{17})$")


def parse_steam_id(claimed_id: Optional[str]) -> str:
    """Extract the 17-digit SteamID64 from an OpenID claimed_id URL."""
    if not claimed_id:
        raise MalformedAssertion("Missing Steam claimed ID")
    m = STEAM_CLAIMED_ID_PATTERN.match(claimed_id.strip())
    if not m:
        raise MalformedAssertion()
    return m.group(1)


class FederatedIdentityBroker:
    def __init__(
        self,
        cfg: AuthConfig,
        *,
        store: AuthStore,
        credentials: CredentialStore,
        sessions: SessionManager,
        pending: PendingStateRegistry,
        provider: SteamProvider,
        library: SteamLibrarySync,
    ) -> None:
        self._cfg = cfg
        self._store = store
        self._credentials = credentials
        self._sessions = sessions
        self._pending = pending
        self._provider = provider
        self._library = library

    def start(self, account_id: Optional[str] = None) -> Dict[str, str]:
        self._pending.sweep()
        state = self._pending.create(account_id)
        url = self._provider.build_authorization_url(self._return_to(state), self._cfg.app_base_url)
        return {"authorizationUrl": url}

    def _return_to(self, state: str) -> str:
        return f"{self._cfg.steam_callback_url}?{urlencode({'state': state})}"

    def complete(self, params: Mapping[str, str]) -> CallbackResult:
        try:
            return self._complete(params)
        except AuthError as e:
            logger.info("Steam callback rejected: %s", e.code)
            return Rejected(error=e)

    def _complete(self, params: Mapping[str, str]) -> Linked:
        # Consumed (deleted) here, before any provider I/O, so a replay cannot reuse it.
        state = params.get("state")
        pending = self._pending.consume(state)
        if pending is None:
            raise InvalidOrExpiredState()

        # The assertion must be addressed to the callback this state was issued for.
        if params.get("openid.return_to") != self._return_to(state):
            raise AuthFailed()

        if not self._provider.verify_assertion(params):
            raise AuthFailed()

        steam_id = parse_steam_id(params.get("openid.claimed_id"))

        with self._store.transaction():
            if pending.account_id is not None:
                account = self._credentials.link_external_identity(pending.account_id, steam_id)
            else:
                account = self._credentials.get_or_create_by_external_id(steam_id)
            token = self._sessions.issue(account.id)

        synced = self._sync_best_effort(account.id)
        return Linked(account_id=account.id, steam_id=steam_id, synced_games=synced, session_token=token)

    def _sync_best_effort(self, account_id: str) -> int:
        try:
            return self._library.sync_account(account_id)
        except AuthError as e:
            logger.warning("Catalog sync after Steam link failed for account %s: %s", account_id, e.code)
        except Exception:
            logger.exception("Catalog sync after Steam link failed for account %s", account_id)
        return 0
