"""
API request and response models for Agora REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from auth.authorization import Action, ResourceType
from auth.models import Account, GlobalRole, TokenPair

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CredentialsRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup and /auth/login.

    max_length=255 on password keeps bodies bounded; the password policy in
    auth/passwords.py enforces the tighter 72-byte bcrypt limit on signup.
    """

    identity: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh and /auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/auth/accounts/{id}. At least one field."""

    role: Optional[GlobalRole] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def require_change(self) -> "AccountPatch":
        if self.role is None and self.is_active is None:
            raise ValueError("Provide role and/or is_active.")
        return self


class PermissionCheckRequest(BaseModel):
    """Request body for POST /api/v1/auth/permissions/check.

    resource_type and resource_id go together; both may be omitted for
    global actions (community.create).
    """

    action: Action
    resource_type: Optional[ResourceType] = None
    resource_id: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def resource_pair(self) -> "PermissionCheckRequest":
        if (self.resource_type is None) != (self.resource_id is None):
            raise ValueError("resource_type and resource_id must be given together.")
        return self


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public view of an account. Never includes credential material."""

    model_config = ConfigDict(frozen=True)

    id: int
    identity: str
    role: GlobalRole
    is_active: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            identity=account.identity,
            role=account.role,
            is_active=account.is_active,
            created_at=account.created_at or "",
            last_login=account.last_login,
        )


class TokenPairResponse(BaseModel):
    """Response body for POST /auth/login and /auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_expires_in: int
    account_id: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_in=pair.access_expires_in,
            refresh_expires_in=pair.refresh_expires_in,
            account_id=pair.account_id,
        )


class PermissionCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    code: Optional[str] = None  # taxonomy code of the deny reason


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
