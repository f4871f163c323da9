"""
api/routes/v1/auth.py -- Authentication and account management REST endpoints.

Routes:
  POST  /api/v1/auth/signup             -- create a member account; 201
  POST  /api/v1/auth/login              -- password login; access + refresh token pair
  POST  /api/v1/auth/refresh            -- rotate a refresh token; new pair
  POST  /api/v1/auth/logout             -- revoke one refresh token; 204
  POST  /api/v1/auth/logout-all         -- revoke every session of the caller; 204
  GET   /api/v1/auth/me                 -- current account (requires auth)
  POST  /api/v1/auth/password           -- change password, revokes all sessions; 204
  PATCH /api/v1/auth/accounts/{id}      -- change role / active flag (admin only)
  POST  /api/v1/auth/permissions/check  -- ask whether the caller may perform an action

Security:
  Login, signup and refresh are rate-limited per IP (limits from Settings).
  The gateway gives wrong-identity and wrong-password the same error.
  Cache-Control: no-store on every response that carries tokens.
  Refresh tokens travel in JSON bodies, never in URLs, so they stay out of
  access logs.

Errors: handlers do not catch AuthError. api/main.py renders every AuthError
as {"error": {"code", "message"}} with the status the error class declares.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountPatch,
    AccountResponse,
    CredentialsRequest,
    PasswordChangeRequest,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RefreshRequest,
    TokenPairResponse,
)
from auth.authorization import ResourceRef
from auth.dependencies import bearer_token, get_current_account, get_gateway, require_admin
from auth.gateway import AuthGateway
from auth.models import Account, TokenPair
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /auth/signup, /auth/login, /auth/refresh, /auth/logout: public
# - POST  /auth/logout-all, /auth/password, /auth/permissions/check: requires auth
# - GET   /auth/me: requires auth
# - PATCH /auth/accounts/{id}: requires admin
router = APIRouter()


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=TokenPairResponse.from_pair(pair).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signup_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", response_model=AccountResponse, status_code=201)
def signup(request: Request, body: CredentialsRequest) -> AccountResponse:
    """Register a new member account.

    409 duplicate_identity if taken, 400 weak_password if the password policy
    rejects it, 403 registration_disabled when self-registration is off.
    """
    gateway: AuthGateway = get_gateway(request)
    account = gateway.signup(body.identity, body.password)
    return AccountResponse.from_account(account)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=TokenPairResponse)
def login(request: Request, body: CredentialsRequest) -> JSONResponse:
    """Authenticate with identity and password; return an access/refresh pair.

    Returns the same 401 invalid_credentials for an unknown identity and a
    wrong password.
    """
    gateway: AuthGateway = get_gateway(request)
    return _token_response(gateway.login(body.identity, body.password))


@limiter.limit(_settings.refresh_rate_limit)
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is consumed.

    401 token_reused means the token was already rotated: every session in
    its chain is now revoked and the client must log in again.
    """
    gateway: AuthGateway = get_gateway(request)
    return _token_response(gateway.refresh(body.refresh_token))


@router.post("/auth/logout", status_code=204)
def logout(request: Request, body: RefreshRequest) -> Response:
    """Revoke the given refresh token. Always 204, even for unknown tokens."""
    get_gateway(request).logout(body.refresh_token)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", status_code=204)
def logout_all(request: Request, current: Account = Depends(get_current_account)) -> Response:
    """Revoke every refresh session of the caller (log out everywhere)."""
    get_gateway(request).logout_all(current)
    return Response(status_code=204)


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    return AccountResponse.from_account(current)


@router.post("/auth/password", status_code=204)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current: Account = Depends(get_current_account),
) -> Response:
    """Change the caller's password. Every session, including this one, is revoked."""
    get_gateway(request).change_password(current, body.current_password, body.new_password)
    return Response(status_code=204)


@router.post("/auth/permissions/check", response_model=PermissionCheckResponse)
def check_permission(request: Request, body: PermissionCheckRequest) -> PermissionCheckResponse:
    """Report whether the caller may perform an action on a resource.

    Always 200 for an authenticated caller -- a deny is an answer, not an
    error. Lets clients hide controls the user can not use.
    """
    resource = None
    if body.resource_type is not None:
        resource = ResourceRef(type=body.resource_type, id=body.resource_id)
    decision = get_gateway(request).check(bearer_token(request), body.action, resource)
    return PermissionCheckResponse(
        allowed=decision.allowed,
        code=decision.error.code if decision.error is not None else None,
    )


# ---------------------------------------------------------------------------
# Account management (admin only)
# ---------------------------------------------------------------------------


@router.patch("/auth/accounts/{account_id}", response_model=AccountResponse)
def update_account(
    request: Request,
    account_id: int,
    body: AccountPatch,
    current: Account = Depends(require_admin),
) -> AccountResponse:
    """Change an account's global role or active flag.

    Deactivation revokes every session of the target. Demoting or
    deactivating the last active admin is refused with 400 last_admin.
    """
    updated = get_gateway(request).set_account_status(
        current,
        account_id,
        role=body.role,
        is_active=body.is_active,
    )
    return AccountResponse.from_account(updated)
