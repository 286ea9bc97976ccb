from __future__ import annotations

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol

from arcade.auth.models import Account, GameRecord, SessionRecord


class DuplicateKey(Exception):
    """A unique constraint rejected a write; `field` names the constrained column."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"duplicate value for unique field: {field}")


class AuthStore(Protocol):
    """
    Persistence interface for accounts, sessions and synced games.

    Implementations: in-process (dev/tests) and PostgreSQL. Uniqueness of account
    email and steam_id is enforced by the implementation, not by callers.
    """

    def transaction(self) -> ContextManager[None]:
        """
        Group writes so that either all of them land or none do.

        Nested use joins the outer transaction. Callers must not perform network I/O
        inside it.
        """

    # ---- accounts ----

    def insert_account(self, account: Account) -> None:
        """Insert a new account. Raises DuplicateKey("email") / DuplicateKey("steam_id")."""

    def insert_or_get_by_steam_id(self, account: Account) -> Account:
        """
        Atomic insert-or-find keyed on steam_id.

        Returns the inserted account, or the existing account that already owns
        `account.steam_id`.
        """

    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_email(self, email: str) -> Optional[Account]: ...

    def get_account_by_steam_id(self, steam_id: str) -> Optional[Account]: ...

    def set_steam_id(self, account_id: str, steam_id: str, updated_at: datetime) -> Optional[Account]:
        """Returns the updated account, None if it does not exist. Raises DuplicateKey("steam_id")."""

    # ---- sessions ----

    def insert_session(self, session: SessionRecord) -> None: ...

    def get_session(self, token_hash: str) -> Optional[SessionRecord]: ...

    def touch_session(self, token_hash: str, last_seen_at: datetime) -> None: ...

    def delete_session(self, token_hash: str) -> None: ...

    def delete_expired_sessions(self, now: datetime) -> int:
        """Delete every session with expires_at <= now. Returns the number removed."""

    # ---- games ----

    def replace_provider_games(self, account_id: str, provider: str, games: List[GameRecord]) -> None:
        """Delete-then-insert the account's games for one provider, in one transaction."""

    def count_games(self, account_id: str, provider: str) -> int: ...
