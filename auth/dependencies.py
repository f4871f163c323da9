"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Access tokens arrive as `Authorization: Bearer <token>`. Everything else
(verification, account lookup, permission checks) is delegated to the
AuthGateway stored on app.state by api/main.py's lifespan.

get_current_account() raises the gateway's AuthError on failure; the
exception handler in api/main.py turns that into 401/403 with the standard
error envelope.

require_permission() is the guard every protected route declares. It runs
before the handler body, so a denied request never reaches it:

    @router.delete("/communities/{community_id}/posts/{post_id}")
    async def delete_post(
        post_id: int,
        account: Account = Depends(require_permission(Action.post_delete, ResourceType.post, "post_id")),
    ): ...

Layer rule: may import from fastapi (this module is part of FastAPI's
dependency injection system). No imports from api/ or community/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.authorization import Action, ResourceRef, ResourceType
from auth.errors import InsufficientRole, ResourceNotFound
from auth.gateway import AuthGateway
from auth.models import Account


def get_gateway(request: Request) -> AuthGateway:
    return request.app.state.gateway


def bearer_token(request: Request) -> str | None:
    """Return the raw bearer token from the Authorization header, if any."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_account(request: Request) -> Account:
    """Require a valid access token for an active account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    return get_gateway(request).authenticate(bearer_token(request))


def require_admin(request: Request) -> Account:
    """Require the global admin role. 401 if unauthenticated, 403 if not admin."""
    account = get_current_account(request)
    if not account.is_admin:
        raise InsufficientRole()
    return account


def require_permission(
    action: Action,
    resource_type: ResourceType | None = None,
    id_param: str | None = None,
) -> Callable[[Request], Account]:
    """Build a dependency that allows the request only if the caller may perform `action`.

    resource_type / id_param name the resource: the id is read from the path
    parameter called id_param. Leave both unset for global actions such as
    community.create.
    """

    def guard(request: Request) -> Account:
        resource = None
        if resource_type is not None and id_param is not None:
            try:
                resource = ResourceRef(type=resource_type, id=int(request.path_params[id_param]))
            except (KeyError, ValueError) as exc:
                raise ResourceNotFound() from exc
        return get_gateway(request).require_permission(bearer_token(request), action, resource)

    return guard
