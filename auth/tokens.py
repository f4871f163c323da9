"""
auth/tokens.py -- Token Service: access JWTs and rotating refresh tokens.

Security design decisions:
  Access tokens: python-jose HS256 JWTs carrying sub (account id), role, iat,
       exp, jti and a `typ` of "access". The header `kid` names the signing
       key so rotated-out keys (Settings.previous_secret_keys) keep verifying
       until their tokens expire. Never stored; validity is pure computation.

  Verification order: structure -> signature -> claims -> expiry. Checking
       the signature before expiry means an authentic expired token reports
       Expired, while a tampered one reports SignatureInvalid whatever its exp.
       Expiry is compared against the injected clock, not jose's wall clock.

  Refresh tokens: secrets.token_urlsafe(32) -- 256 bits of entropy, opaque to
       the client. Only SHA-256(token) is persisted as the session id. A
       plain digest is enough here: brute-forcing a 256-bit random preimage is
       infeasible, and the lookup must survive signing-key rotation.

  Rotation-on-use: every refresh consumes the presented token and returns a
       new pair. The access token is minted first (pure computation); the
       pair is only returned after the session row commits, so a failed or
       aborted commit leaves no usable token behind.

  Refresh tokens are secrets. They are never logged -- log lines use the
  first 12 hex chars of the session id at most.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

import hashlib
import json
import logging
import math
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import jws, jwt
from jose.exceptions import JWSError

from auth.credentials import CredentialStore
from auth.errors import AccountDisabled, AuthError, Expired, Malformed, SignatureInvalid
from auth.models import AccessClaims, Account, GlobalRole, TokenPair
from auth.sessions import SessionRegistry
from core.clock import Clock, utc_now
from core.config import Settings, get_settings

logger = logging.getLogger("agora.auth.tokens")

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenCheck:
    """Outcome of verify_access(): exactly one of claims / error is set."""

    claims: AccessClaims | None = None
    error: AuthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> AccessClaims:
        """Return the claims or raise the verification error."""
        if self.error is not None:
            raise self.error
        return self.claims


@dataclass(frozen=True)
class IssuedRefresh:
    token: str
    session_id: str
    expires_at: datetime


# ---------------------------------------------------------------------------
# Key ring
# ---------------------------------------------------------------------------


def key_id(secret: str) -> str:
    """Short public fingerprint of a signing key, used as the JWT `kid`."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()[:16]


def hash_refresh_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class KeyRing:
    """Current signing key plus retired keys that still verify."""

    def __init__(self, current: str, previous: list[str] | None = None) -> None:
        self.current = current
        self.current_id = key_id(current)
        self._keys = {key_id(k): k for k in (previous or [])}
        self._keys[self.current_id] = current

    def lookup(self, kid: str) -> str | None:
        return self._keys.get(kid)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TokenService:
    def __init__(
        self,
        registry: SessionRegistry,
        credentials: CredentialStore,
        settings: Settings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._credentials = credentials
        self._settings = settings or get_settings()
        self._clock = clock
        self._keys = KeyRing(self._settings.secret_key, self._settings.previous_secret_keys)

    @property
    def access_lifetime(self) -> int:
        return self._settings.access_token_expire_seconds

    @property
    def refresh_lifetime(self) -> int:
        return self._settings.refresh_token_expire_seconds

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(self, account: Account) -> str:
        issued = self._clock()
        expires = issued + timedelta(seconds=self.access_lifetime)
        payload = {
            "sub": str(account.id),
            "role": account.role.value,
            "typ": _ACCESS_TYPE,
            "iat": int(issued.timestamp()),
            # Rounded up so a sub-second clock never shortens the lifetime.
            "exp": math.ceil(expires.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self._keys.current, algorithm=_ALGORITHM, headers={"kid": self._keys.current_id})

    def verify_access(self, token: str) -> TokenCheck:
        """Verify an access token without raising.

        Returns TokenCheck(claims=...) on success, otherwise TokenCheck(error=)
        holding Malformed, SignatureInvalid or Expired.
        """
        try:
            header = jws.get_unverified_header(token)
            jws.get_unverified_claims(token)
        except JWSError:
            return TokenCheck(error=Malformed())
        if header.get("alg") != _ALGORITHM:
            return TokenCheck(error=SignatureInvalid())
        secret = self._keys.lookup(str(header.get("kid", "")))
        if secret is None:
            return TokenCheck(error=SignatureInvalid())
        # Structure was checked above, so any failure here is the signature.
        try:
            raw = jws.verify(token, secret, algorithms=[_ALGORITHM])
        except JWSError:
            return TokenCheck(error=SignatureInvalid())

        claims = _parse_claims(raw, str(header["kid"]))
        if claims is None:
            return TokenCheck(error=Malformed())
        if claims.expires_at <= self._clock():
            return TokenCheck(error=Expired())
        return TokenCheck(claims=claims)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(self, account: Account) -> IssuedRefresh:
        """Mint a refresh token and root a new lineage for it."""
        issued = self._new_refresh()
        self._registry.record(account.id, issued.session_id, issued.expires_at)
        return issued

    def issue_pair(self, account: Account) -> TokenPair:
        access = self.issue_access_token(account)
        refresh = self.issue_refresh_token(account)
        return self._pair(account, access, refresh)

    def rotate_refresh(self, token: str) -> TokenPair:
        """Consume a refresh token and return a fresh access/refresh pair.

        Raises Malformed (unknown token), Expired, Revoked, Reused (lineage
        already revoked when this is raised) or AccountDisabled.
        """
        session_id = hash_refresh_token(token)
        session = self._registry.get(session_id)
        if session is None:
            raise Malformed()
        self._registry.check_presentable(session)

        account = self._credentials.get_account(session.account_id)
        if not account.is_active:
            self._registry.revoke_all(account.id)
            raise AccountDisabled()

        access = self.issue_access_token(account)
        fresh = self._new_refresh()
        # The conditional update inside record() is what makes rotation
        # single-use under concurrency; the checks above are only a fast path.
        self._registry.record(account.id, fresh.session_id, fresh.expires_at, parent_id=session_id)
        logger.info("Refresh token rotated (account_id=%s family=%s)", account.id, session.family_id[:12])
        return self._pair(account, access, fresh)

    def _new_refresh(self) -> IssuedRefresh:
        raw = secrets.token_urlsafe(32)
        return IssuedRefresh(
            token=raw,
            session_id=hash_refresh_token(raw),
            expires_at=self._clock() + timedelta(seconds=self.refresh_lifetime),
        )

    def _pair(self, account: Account, access: str, refresh: IssuedRefresh) -> TokenPair:
        return TokenPair(
            access_token=access,
            refresh_token=refresh.token,
            access_expires_in=self.access_lifetime,
            refresh_expires_in=self.refresh_lifetime,
            account_id=account.id,
        )


def _parse_claims(raw: bytes, kid: str) -> AccessClaims | None:
    """Decode a verified payload into AccessClaims; None if any claim is off."""
    try:
        payload = json.loads(raw)
        if payload.get("typ") != _ACCESS_TYPE:
            return None
        return AccessClaims(
            account_id=int(payload["sub"]),
            role=GlobalRole(payload["role"]),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            token_id=str(payload["jti"]),
            key_id=kid,
        )
    except (ValueError, KeyError, TypeError, AttributeError):
        return None
