"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

Account deliberately has no password hash field. The hash only exists inside
auth/store.py rows and auth/credentials.py -- nothing that receives an
Account can leak it.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class GlobalRole(str, Enum):
    member = "member"
    admin = "admin"


class SessionState(str, Enum):
    """Refresh session lifecycle: active -> rotated, or active -> revoked. Both terminal."""

    active = "active"
    rotated = "rotated"
    revoked = "revoked"


@dataclass
class Account:
    """An identity on the site.

    identity is the unique handle or email, normalised to lower case.
    Accounts are never physically deleted -- is_active=False soft-disables
    them so posts and communities keep a valid author/owner reference.
    """

    identity: str
    role: GlobalRole = GlobalRole.member
    id: int | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role is GlobalRole.admin


@dataclass
class RefreshSession:
    """One link in a refresh-token lineage.

    id is SHA-256(raw refresh token); the raw token is never persisted.
    family_id is the id of the lineage root (the session created at login),
    so revoking a lineage is one UPDATE keyed by family_id. replaced_by points
    to the child created when this session was rotated.
    """

    id: str
    account_id: int
    family_id: str
    issued_at: str
    expires_at: str
    state: SessionState = SessionState.active
    parent_id: str | None = None
    replaced_by: str | None = None
    revoked_at: str | None = None


@dataclass(frozen=True)
class AccessClaims:
    """Verified claim set of an access token. Never stored."""

    account_id: int
    role: GlobalRole
    issued_at: datetime
    expires_at: datetime
    token_id: str
    key_id: str


@dataclass(frozen=True)
class TokenPair:
    """What login and refresh hand back to the client."""

    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int
    account_id: int
