from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from arcade.auth.errors import AuthError


@dataclass(frozen=True)
class Account:
    """Local identity: password credentials and/or a linked Steam id."""

    id: str
    email: Optional[str]
    password_hash: Optional[str]
    steam_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def steam_linked(self) -> bool:
        return self.steam_id is not None

    def to_public(self) -> Dict[str, Any]:
        # Never expose password_hash.
        return {
            "id": self.id,
            "email": self.email,
            "steamLinked": self.steam_linked,
            "steamId": self.steam_id,
        }


@dataclass(frozen=True)
class SessionRecord:
    token_hash: str
    account_id: str
    created_at: datetime
    expires_at: datetime
    last_seen_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class PendingAuthState:
    account_id: Optional[str]
    expires_at: datetime


@dataclass(frozen=True)
class GameRecord:
    """One catalog entry owned by an account on an external provider."""

    provider: str
    external_id: str
    name: str
    playtime_minutes: int
    artwork_url: Optional[str]
    last_synced_at: datetime


@dataclass(frozen=True)
class Linked:
    account_id: str
    steam_id: str
    synced_games: int
    # Raw token for the transport layer to set as a cookie; never put in a URL.
    session_token: str


@dataclass(frozen=True)
class Rejected:
    error: AuthError

    @property
    def reason(self) -> str:
        return self.error.message


CallbackResult = Union[Linked, Rejected]
