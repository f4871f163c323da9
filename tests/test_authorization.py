"""
tests/test_authorization.py -- Unit tests for auth/authorization.py.

Covers:
  - Role order NONE < MEMBER < MODERATOR < OWNER and role_at_least
  - Monotonicity: an action allowed for a role is allowed for every higher role
  - Owner / member post deletion scenario
  - Author override for own posts
  - Bans keep read access only
  - Disabled accounts are denied whatever their role; admins bypass
  - Missing and soft-deleted resources deny with ResourceNotFound
"""

from __future__ import annotations

import pytest

from auth.authorization import (
    REQUIRED_ROLE,
    Action,
    AuthorizationEngine,
    CommunityRole,
    ResourceRef,
    ResourceType,
    role_at_least,
)
from auth.errors import AccountDisabled, InsufficientRole, ResourceNotFound
from auth.models import Account, GlobalRole
from community.models import Ban, Community, Membership, MembershipRole, Post

OWNER, MODERATOR, MEMBER, OUTSIDER, ADMIN = 1, 2, 3, 4, 5


def _account(account_id: int, role: GlobalRole = GlobalRole.member, is_active: bool = True) -> Account:
    return Account(identity=f"user{account_id}@example.com", id=account_id, role=role, is_active=is_active)


@pytest.fixture
def world(community_store):
    """One community with an owner, a moderator, a member and a post by the member."""
    community_id = community_store.create_community(Community(name="python", owner_id=OWNER))
    community_store.add_membership(Membership(community_id, MODERATOR, MembershipRole.moderator))
    community_store.add_membership(Membership(community_id, MEMBER))
    post_id = community_store.create_post(Post(community_id=community_id, author_id=MEMBER, content="hello"))
    owner_post_id = community_store.create_post(Post(community_id=community_id, author_id=OWNER, content="rules"))
    return {
        "engine": AuthorizationEngine(community_store),
        "store": community_store,
        "community": ResourceRef(ResourceType.community, community_id),
        "post": ResourceRef(ResourceType.post, post_id),
        "owner_post": ResourceRef(ResourceType.post, owner_post_id),
    }


# ---------------------------------------------------------------------------
# Role order
# ---------------------------------------------------------------------------


def test_role_order_is_total():
    assert CommunityRole.NONE < CommunityRole.MEMBER < CommunityRole.MODERATOR < CommunityRole.OWNER
    assert role_at_least(CommunityRole.OWNER, CommunityRole.MODERATOR)
    assert role_at_least(CommunityRole.MEMBER, CommunityRole.MEMBER)
    assert not role_at_least(CommunityRole.MEMBER, CommunityRole.MODERATOR)


def test_role_from_membership():
    assert CommunityRole.from_membership(None) is CommunityRole.NONE
    assert CommunityRole.from_membership(MembershipRole.moderator) is CommunityRole.MODERATOR
    assert CommunityRole.from_membership("owner") is CommunityRole.OWNER


def test_every_action_has_a_required_role():
    assert set(REQUIRED_ROLE) == set(Action)


@pytest.mark.parametrize("action", [a for a in Action if a is not Action.community_create])
def test_permissions_monotonic_in_role(world, action):
    engine = world["engine"]
    resource = world["community"] if action.value.startswith(("community", "member")) else world["owner_post"]
    ladder = [
        (CommunityRole.NONE, OUTSIDER),
        (CommunityRole.MEMBER, MEMBER),
        (CommunityRole.MODERATOR, MODERATOR),
        (CommunityRole.OWNER, OWNER),
    ]
    allowed = [engine.can_perform(_account(account_id), action, resource).allowed for _, account_id in ladder]
    # Once allowed, allowed for every higher role. The owner post is authored
    # by OWNER, the top of the ladder, so the author override can not break this.
    first = allowed.index(True) if True in allowed else len(allowed)
    assert all(allowed[first:])
    assert not any(allowed[:first])


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_member_cannot_delete_owner_post_owner_can(world):
    engine = world["engine"]
    denied = engine.can_perform(_account(MEMBER), Action.post_delete, world["owner_post"])
    assert not denied.allowed
    assert isinstance(denied.error, InsufficientRole)
    assert denied.effective_role is CommunityRole.MEMBER

    assert engine.can_perform(_account(OWNER), Action.post_delete, world["owner_post"]).allowed


def test_author_may_edit_and_delete_own_post(world):
    engine = world["engine"]
    member = _account(MEMBER)
    assert engine.can_perform(member, Action.post_edit, world["post"]).allowed
    assert engine.can_perform(member, Action.post_delete, world["post"]).allowed


def test_moderator_can_delete_but_not_edit_others_posts(world):
    engine = world["engine"]
    moderator = _account(MODERATOR)
    assert engine.can_perform(moderator, Action.post_delete, world["post"]).allowed
    assert not engine.can_perform(moderator, Action.post_edit, world["post"]).allowed


def test_outsider_can_read_and_join_but_not_post(world):
    engine = world["engine"]
    outsider = _account(OUTSIDER)
    assert engine.can_perform(outsider, Action.community_read, world["community"]).allowed
    assert engine.can_perform(outsider, Action.community_join, world["community"]).allowed
    assert not engine.can_perform(outsider, Action.post_create, world["community"]).allowed


def test_community_create_needs_no_resource(world):
    assert world["engine"].can_perform(_account(OUTSIDER), Action.community_create).allowed


def test_missing_resource_is_not_found(world):
    engine = world["engine"]
    missing = ResourceRef(ResourceType.community, 9999)
    decision = engine.can_perform(_account(OWNER), Action.community_read, missing)
    assert isinstance(decision.error, ResourceNotFound)
    assert isinstance(engine.can_perform(_account(OWNER), Action.post_read).error, ResourceNotFound)


def test_soft_deleted_post_is_not_found(world):
    world["store"].soft_delete_post(world["post"].id)
    decision = world["engine"].can_perform(_account(MEMBER), Action.post_edit, world["post"])
    assert isinstance(decision.error, ResourceNotFound)


# ---------------------------------------------------------------------------
# Bans, disabled accounts, admins
# ---------------------------------------------------------------------------


def test_banned_member_keeps_read_only(world):
    store, engine = world["store"], world["engine"]
    store.ban_member(Ban(world["community"].id, MEMBER, banned_by=MODERATOR))
    member = _account(MEMBER)

    assert store.get_membership(world["community"].id, MEMBER) is None
    assert engine.can_perform(member, Action.community_read, world["community"]).allowed
    assert engine.can_perform(member, Action.post_read, world["post"]).allowed
    for action in (Action.post_create, Action.community_join):
        decision = engine.can_perform(member, action, world["community"])
        assert isinstance(decision.error, InsufficientRole)
    # No author override while banned.
    assert not engine.can_perform(member, Action.post_edit, world["post"]).allowed


def test_disabled_account_denied_whatever_role(world):
    engine = world["engine"]
    for account in (_account(OWNER, is_active=False), _account(ADMIN, GlobalRole.admin, is_active=False)):
        decision = engine.can_perform(account, Action.community_read, world["community"])
        assert isinstance(decision.error, AccountDisabled)


def test_admin_bypasses_membership(world):
    engine = world["engine"]
    admin = _account(ADMIN, GlobalRole.admin)
    assert engine.can_perform(admin, Action.community_delete, world["community"]).allowed
    assert engine.can_perform(admin, Action.post_edit, world["post"]).allowed
    assert engine.can_perform(admin, Action.community_read, ResourceRef(ResourceType.community, 9999)).allowed


def test_require_raises_deny_error(world):
    with pytest.raises(InsufficientRole):
        world["engine"].require(_account(MEMBER), Action.community_delete, world["community"])
    decision = world["engine"].require(_account(OWNER), Action.community_delete, world["community"])
    assert decision.effective_role is CommunityRole.OWNER
