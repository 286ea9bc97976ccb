from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional

from arcade.auth.errors import AccountNotFound, EmailTaken, ExternalIdentityTaken, InvalidCredentials
from arcade.auth.models import Account
from arcade.auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from arcade.auth.util import normalize_email, utcnow
from arcade.storage.base import AuthStore, DuplicateKey

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Accounts, password credentials and Steam identity links.

    Uniqueness (email, steam_id) is decided by the store's constraints, so concurrent
    callers racing on the same value cannot both win.
    """

    def __init__(self, store: AuthStore, *, bcrypt_rounds: int = DEFAULT_ROUNDS, clock: Callable = utcnow) -> None:
        self._store = store
        self._rounds = bcrypt_rounds
        self._clock = clock
        # Compared against when the email is unknown so both failure paths cost one bcrypt check.
        self._dummy_hash = hash_password(uuid.uuid4().hex, rounds=bcrypt_rounds)

    def create_account(self, email: str, password: str) -> Account:
        """
        Create a password account.

        Raises:
            EmailTaken: an account already uses this email (case-insensitive)
        """
        normalized = normalize_email(email)
        if self._store.get_account_by_email(normalized) is not None:
            raise EmailTaken()

        now = self._clock()
        account = Account(
            id=str(uuid.uuid4()),
            email=normalized,
            password_hash=hash_password(password, rounds=self._rounds),
            steam_id=None,
            created_at=now,
            updated_at=now,
        )
        try:
            self._store.insert_account(account)
        except DuplicateKey as e:
            # Lost a race with a concurrent registration for the same email.
            if e.field == "email":
                raise EmailTaken() from e
            raise
        logger.info("Created account %s", account.id)
        return account

    def verify_credentials(self, email: str, password: str) -> Account:
        """
        Return the account for a matching email/password pair.

        Raises:
            InvalidCredentials: unknown email, Steam-only account, or wrong password
        """
        account = self._store.get_account_by_email(normalize_email(email))
        if account is None or not account.password_hash:
            verify_password(password, self._dummy_hash)
            raise InvalidCredentials()
        if not verify_password(password, account.password_hash):
            raise InvalidCredentials()
        return account

    def get_account(self, account_id: str) -> Account:
        account = self._store.get_account(account_id)
        if account is None:
            raise AccountNotFound()
        return account

    def find_account(self, account_id: str) -> Optional[Account]:
        return self._store.get_account(account_id)

    def link_external_identity(self, account_id: str, steam_id: str) -> Account:
        """
        Link a Steam id to an existing account.

        Re-linking the same id to the same account is a no-op.

        Raises:
            AccountNotFound: no account with `account_id`
            ExternalIdentityTaken: the Steam id belongs to a different account
        """
        try:
            updated = self._store.set_steam_id(account_id, steam_id, self._clock())
        except DuplicateKey as e:
            if e.field != "steam_id":
                raise
            owner = self._store.get_account_by_steam_id(steam_id)
            if owner is not None and owner.id == account_id:
                return owner
            logger.warning("Steam id already linked to another account (requested by %s)", account_id)
            raise ExternalIdentityTaken() from e
        if updated is None:
            raise AccountNotFound()
        logger.info("Linked Steam identity to account %s", account_id)
        return updated

    def get_or_create_by_external_id(self, steam_id: str) -> Account:
        """
        Return the account linked to `steam_id`, creating a bare one if none exists.

        Uses the store's atomic insert-or-find, so concurrent first logins with the
        same Steam id resolve to a single account.
        """
        now = self._clock()
        candidate = Account(
            id=str(uuid.uuid4()),
            email=None,
            password_hash=None,
            steam_id=steam_id,
            created_at=now,
            updated_at=now,
        )
        account = self._store.insert_or_get_by_steam_id(candidate)
        if account.id == candidate.id:
            logger.info("Created Steam-only account %s", account.id)
        return account
