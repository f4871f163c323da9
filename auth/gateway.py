"""
auth/gateway.py -- Auth Gateway: the façade request handlers call.

Sequences the Credential Store, Token Service, Session Registry and
Authorization Engine. Route code talks to this class only.

Failure policy:
  Every component raises a typed AuthError (auth/errors.py). The gateway lets
  them propagate unchanged; each carries a stable code and HTTP status and a
  fixed message, so nothing internal (hash algorithm, key state, whether an
  identity exists) reaches the client. api/main.py renders them.

Atomicity:
  login and refresh return a TokenPair only after the refresh session row
  has committed. Access tokens are minted first because minting is pure
  computation with nothing to roll back; if the session write fails the
  minted token is dropped with the exception.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

import logging

from auth.authorization import Action, AuthorizationEngine, CommunityDirectory, Decision, ResourceRef
from auth.credentials import CredentialStore
from auth.errors import AccountDisabled, AuthenticationRequired, InsufficientRole, RegistrationDisabled
from auth.models import Account, GlobalRole, TokenPair
from auth.sessions import SessionRegistry
from auth.store import AuthStore
from auth.tokens import TokenService, hash_refresh_token
from core.clock import Clock, utc_now
from core.config import Settings, get_settings

logger = logging.getLogger("agora.auth")


class AuthGateway:
    def __init__(
        self,
        credentials: CredentialStore,
        tokens: TokenService,
        sessions: SessionRegistry,
        engine: AuthorizationEngine,
        settings: Settings | None = None,
    ) -> None:
        self.credentials = credentials
        self.tokens = tokens
        self.sessions = sessions
        self.engine = engine
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Credential flows
    # ------------------------------------------------------------------

    def signup(self, identity: str, password: str) -> Account:
        """Register a member account. Raises DuplicateIdentity / WeakPassword."""
        if not self._settings.self_registration_enabled:
            raise RegistrationDisabled()
        return self.credentials.register(identity, password)

    def login(self, identity: str, password: str) -> TokenPair:
        """Verify credentials and start a new session lineage.

        A wrong password and an unknown identity both raise InvalidCredentials.
        A disabled account only learns it is disabled after a correct password.
        """
        account = self.credentials.verify(identity, password)
        if not account.is_active:
            raise AccountDisabled()
        pair = self.tokens.issue_pair(account)
        self.credentials.record_login(account.id)
        logger.info("Login succeeded (account_id=%s)", account.id)
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token. Raises Malformed, Expired, Revoked, Reused, AccountDisabled."""
        return self.tokens.rotate_refresh(refresh_token)

    def logout(self, refresh_token: str) -> None:
        """Revoke the session behind a refresh token. Unknown tokens are a no-op."""
        self.sessions.revoke(hash_refresh_token(refresh_token))

    def logout_all(self, account: Account) -> int:
        return self.sessions.revoke_all(account.id)

    def change_password(self, account: Account, current_password: str, new_password: str) -> None:
        """Swap the password, then revoke every session so stolen tokens die too."""
        self.credentials.change_password(account.id, current_password, new_password)
        self.sessions.revoke_all(account.id)

    # ------------------------------------------------------------------
    # Request-time checks
    # ------------------------------------------------------------------

    def authenticate(self, access_token: str | None) -> Account:
        """Resolve a bearer token to a live, active account.

        The token alone is not enough: the account is re-read so that a
        deactivation takes effect before the token expires.
        """
        if not access_token:
            raise AuthenticationRequired()
        claims = self.tokens.verify_access(access_token).unwrap()
        account = self.credentials.get_by_id_or_none(claims.account_id)
        if account is None:
            raise AuthenticationRequired()
        if not account.is_active:
            raise AccountDisabled()
        return account

    def check(self, access_token: str | None, action: Action, resource: ResourceRef | None = None) -> Decision:
        """Authenticate, then return the Decision instead of raising a deny."""
        account = self.authenticate(access_token)
        return self.engine.can_perform(account, action, resource)

    def require_permission(
        self,
        access_token: str | None,
        action: Action,
        resource: ResourceRef | None = None,
    ) -> Account:
        """Guard for protected operations: return the caller or raise the deny error."""
        account = self.authenticate(access_token)
        self.engine.require(account, action, resource)
        return account

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def set_account_status(
        self,
        actor: Account,
        account_id: int,
        role: GlobalRole | None = None,
        is_active: bool | None = None,
    ) -> Account:
        """Change another account's global role or active flag. Admin only.

        Blocks demoting or deactivating the last active admin (no recovery
        path without DB access). The guard is part of the UPDATE, so two
        admins demoting each other at once leave one admin standing.
        Deactivation revokes every session.
        """
        if not actor.is_admin or not actor.is_active:
            raise InsufficientRole()
        target = self.credentials.get_account(account_id)
        loses_admin = target.is_admin and target.is_active and (
            (role is not None and role is not GlobalRole.admin) or is_active is False
        )
        target = self.credentials.set_status(account_id, role=role, is_active=is_active, keep_an_admin=loses_admin)
        if is_active is False:
            self.sessions.revoke_all(account_id)
        logger.info("Account status changed by admin (actor=%s target=%s)", actor.id, account_id)
        return target

    def bootstrap_admin(self, identity: str, password: str) -> Account:
        """Create an admin account directly (CLI first-run path)."""
        return self.credentials.register(identity, password, role=GlobalRole.admin)


def build_gateway(
    auth_store: AuthStore,
    directory: CommunityDirectory,
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> AuthGateway:
    """Wire the four components over one auth store and a community directory."""
    settings = settings or get_settings()
    credentials = CredentialStore(auth_store, settings, clock)
    sessions = SessionRegistry(auth_store, clock)
    tokens = TokenService(sessions, credentials, settings, clock)
    return AuthGateway(credentials, tokens, sessions, AuthorizationEngine(directory), settings)
