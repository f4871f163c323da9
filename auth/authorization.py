"""
auth/authorization.py -- Authorization Engine: role and membership based permission checks.

Roles inside a community form a closed total order:

    NONE < MEMBER < MODERATOR < OWNER

Every Action declares the minimum CommunityRole it needs; the check is
role_at_least(effective_role, required). Because that comparison is the only
role test, permissions are monotonic: anything a lower role may do, every
higher role may do too.

Evaluation order in can_perform():
  1. Disabled account            -> deny AccountDisabled, whatever the role
  2. Global admin                -> allow (bypasses every other check)
  3. Resolve the resource        -> a post resolves to its community;
                                    missing / soft-deleted -> deny ResourceNotFound
  4. Ban in that community       -> deny InsufficientRole except read actions
  5. Author of the post          -> allow post.edit / post.delete
  6. Membership role vs required -> allow or deny InsufficientRole

Layer rule: no imports from api/ or community/. The engine reads community
data through the CommunityDirectory protocol; community.store.CommunityStore
satisfies it and api/main.py wires the two together.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Protocol

from auth.errors import AccountDisabled, AuthError, InsufficientRole, ResourceNotFound
from auth.models import Account

logger = logging.getLogger("agora.auth.authorization")


class CommunityRole(IntEnum):
    NONE = 0
    MEMBER = 1
    MODERATOR = 2
    OWNER = 3

    @classmethod
    def from_membership(cls, role: str | None) -> "CommunityRole":
        """Map a stored membership role ("member", "moderator", "owner") onto the order."""
        if role is None:
            return cls.NONE
        return cls[str(getattr(role, "value", role)).upper()]


def role_at_least(role: CommunityRole, required: CommunityRole) -> bool:
    return role >= required


class ResourceType(str, Enum):
    community = "community"
    post = "post"


class Action(str, Enum):
    community_create = "community.create"
    community_read = "community.read"
    community_join = "community.join"
    community_update = "community.update"
    community_delete = "community.delete"
    member_remove = "member.remove"
    member_ban = "member.ban"
    member_set_role = "member.set_role"
    post_read = "post.read"
    post_create = "post.create"
    post_edit = "post.edit"
    post_delete = "post.delete"


REQUIRED_ROLE: dict[Action, CommunityRole] = {
    Action.community_create: CommunityRole.NONE,
    Action.community_read: CommunityRole.NONE,
    Action.community_join: CommunityRole.NONE,
    Action.community_update: CommunityRole.OWNER,
    Action.community_delete: CommunityRole.OWNER,
    Action.member_remove: CommunityRole.MODERATOR,
    Action.member_ban: CommunityRole.MODERATOR,
    Action.member_set_role: CommunityRole.OWNER,
    Action.post_read: CommunityRole.NONE,
    Action.post_create: CommunityRole.MEMBER,
    Action.post_edit: CommunityRole.OWNER,
    Action.post_delete: CommunityRole.MODERATOR,
}

# Actions that need no resource at all.
_GLOBAL_ACTIONS = frozenset({Action.community_create})
# Post authors may do these to their own posts regardless of membership role.
_AUTHOR_ACTIONS = frozenset({Action.post_edit, Action.post_delete})
# Banned accounts keep read access only.
_READ_ACTIONS = frozenset({Action.community_read, Action.post_read})


@dataclass(frozen=True)
class ResourceRef:
    type: ResourceType
    id: int


@dataclass(frozen=True)
class Decision:
    """Result of can_perform(): allowed, or the taxonomy error explaining the deny."""

    allowed: bool
    error: AuthError | None = None
    effective_role: CommunityRole = CommunityRole.NONE

    def raise_for_deny(self) -> None:
        if not self.allowed:
            raise self.error


class CommunityDirectory(Protocol):
    """Read side of the community store, as seen by the engine."""

    def get_community(self, community_id: int): ...

    def get_post(self, post_id: int): ...

    def get_membership(self, community_id: int, account_id: int): ...

    def is_banned(self, community_id: int, account_id: int) -> bool: ...


_ALLOW_ADMIN = Decision(allowed=True, effective_role=CommunityRole.OWNER)


class AuthorizationEngine:
    def __init__(self, directory: CommunityDirectory) -> None:
        self._directory = directory

    def can_perform(self, account: Account, action: Action, resource: ResourceRef | None = None) -> Decision:
        if not account.is_active:
            return Decision(allowed=False, error=AccountDisabled())
        if account.is_admin:
            return _ALLOW_ADMIN
        if action in _GLOBAL_ACTIONS:
            return Decision(allowed=True)
        if resource is None:
            return Decision(allowed=False, error=ResourceNotFound())

        community_id, author_id = self._resolve(resource)
        if community_id is None:
            return Decision(allowed=False, error=ResourceNotFound())

        if self._directory.is_banned(community_id, account.id):
            if action in _READ_ACTIONS:
                return Decision(allowed=True)
            return Decision(allowed=False, error=InsufficientRole())

        membership = self._directory.get_membership(community_id, account.id)
        role = CommunityRole.from_membership(membership.role if membership is not None else None)

        if action in _AUTHOR_ACTIONS and author_id == account.id:
            return Decision(allowed=True, effective_role=role)
        if role_at_least(role, REQUIRED_ROLE[action]):
            return Decision(allowed=True, effective_role=role)
        return Decision(allowed=False, error=InsufficientRole(), effective_role=role)

    def require(self, account: Account, action: Action, resource: ResourceRef | None = None) -> Decision:
        """can_perform() that raises the deny error instead of returning it."""
        decision = self.can_perform(account, action, resource)
        if not decision.allowed:
            logger.info(
                "Permission denied (account_id=%s action=%s resource=%s code=%s)",
                account.id,
                action.value,
                f"{resource.type.value}:{resource.id}" if resource else "-",
                decision.error.code,
            )
        decision.raise_for_deny()
        return decision

    def _resolve(self, resource: ResourceRef) -> tuple[int | None, int | None]:
        """Return (community_id, post author_id) for a resource; (None, None) if gone."""
        if resource.type is ResourceType.community:
            community = self._directory.get_community(resource.id)
            return (community.id, None) if community is not None else (None, None)
        post = self._directory.get_post(resource.id)
        if post is None or post.is_deleted:
            return None, None
        return post.community_id, post.author_id
