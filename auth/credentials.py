"""
auth/credentials.py -- Credential Store: registration and password verification.

The only component that sees password hashes. Everything it hands back is an
Account, which has no hash field.

Timing equalization:
  verify() always runs bcrypt, whether or not the identity exists:
  - Unknown identity: bcrypt runs against self._dummy_hash, which is hashed
    with the same cost factor as real hashes
  - Wrong password: bcrypt runs against the real hash
  Both paths raise the same InvalidCredentials, so neither the error nor the
  response time reveals whether an identity is registered.

Callers must not hold locks or open transactions across verify() or
register() -- both block on a deliberately slow hash.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateIdentity, InvalidCredentials, LastAdmin, ResourceNotFound
from auth.models import Account, GlobalRole
from auth.passwords import check_password_policy, hash_password, verify_password
from auth.store import AuthStore
from core.clock import Clock, to_iso, utc_now
from core.config import Settings, get_settings

logger = logging.getLogger("agora.auth.credentials")


def normalize_identity(identity: str) -> str:
    """Handles and emails compare case-insensitively and ignore outer whitespace."""
    return identity.strip().lower()


class CredentialStore:
    def __init__(self, store: AuthStore, settings: Settings | None = None, clock: Clock = utc_now) -> None:
        self._store = store
        self._settings = settings or get_settings()
        self._clock = clock
        # Computed once per store so the first failed login is not measurably
        # faster than later ones.
        self._dummy_hash = hash_password("agora-timing-dummy-1", self._settings.bcrypt_rounds)

    def register(self, identity: str, raw_password: str, role: GlobalRole = GlobalRole.member) -> Account:
        """Create an account. Raises WeakPassword or DuplicateIdentity."""
        identity = normalize_identity(identity)
        check_password_policy(raw_password, identity, self._settings.password_min_length)
        hashed = hash_password(raw_password, self._settings.bcrypt_rounds)
        try:
            account_id = self._store.create_account(identity, hashed, role.value, to_iso(self._clock()))
        except IntegrityError as exc:
            raise DuplicateIdentity() from exc
        logger.info("Account registered (account_id=%s role=%s)", account_id, role.value)
        return self._store.get_account(account_id)

    def verify(self, identity: str, raw_password: str) -> Account:
        """Return the account for a correct password, else raise InvalidCredentials.

        Disabled accounts still verify; deciding what a disabled account may do
        is the caller's job (login refuses with AccountDisabled).
        """
        found = self._store.get_credentials(normalize_identity(identity))
        if found is None:
            # Equalize timing -- do NOT return early before running bcrypt
            verify_password(raw_password, self._dummy_hash)
            raise InvalidCredentials()
        account, hashed = found
        if not verify_password(raw_password, hashed):
            raise InvalidCredentials()
        return account

    def change_password(self, account_id: int, current_password: str, new_password: str) -> None:
        """Replace the password after re-verifying the current one.

        Revoking outstanding sessions is the gateway's job; this only swaps
        the hash.
        """
        account = self.get_account(account_id)
        hashed = self._store.get_password_hash(account_id)
        if not verify_password(current_password, hashed):
            raise InvalidCredentials()
        check_password_policy(new_password, account.identity, self._settings.password_min_length)
        self._store.update_account(account_id, hashed_password=hash_password(new_password, self._settings.bcrypt_rounds))
        logger.info("Password changed (account_id=%s)", account_id)

    def get_account(self, account_id: int) -> Account:
        account = self._store.get_account(account_id)
        if account is None:
            raise ResourceNotFound("Account not found.")
        return account

    def get_by_id_or_none(self, account_id: int) -> Account | None:
        return self._store.get_account(account_id)

    def get_by_identity(self, identity: str) -> Account | None:
        return self._store.get_account_by_identity(normalize_identity(identity))

    def set_status(
        self,
        account_id: int,
        role: GlobalRole | None = None,
        is_active: bool | None = None,
        keep_an_admin: bool = False,
    ) -> Account:
        """Change the global role and/or active flag of an account.

        With keep_an_admin the change is refused with LastAdmin when it would
        leave no active admin; the check and the write are one statement.
        """
        fields: dict = {}
        if role is not None:
            fields["role"] = role
        if is_active is not None:
            fields["is_active"] = is_active
        if not fields:
            return self.get_account(account_id)
        if keep_an_admin:
            if not self._store.update_account_unless_last_admin(account_id, **fields):
                self.get_account(account_id)  # ResourceNotFound if it was never there
                raise LastAdmin()
        elif not self._store.update_account(account_id, **fields):
            raise ResourceNotFound("Account not found.")
        logger.info(
            "Account status changed (account_id=%s role=%s active=%s)",
            account_id,
            role.value if role is not None else "-",
            is_active if is_active is not None else "-",
        )
        return self.get_account(account_id)

    def record_login(self, account_id: int) -> None:
        self._store.update_account(account_id, last_login=to_iso(self._clock()))
