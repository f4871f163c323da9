"""
community/models.py -- Domain dataclasses for communities, memberships and posts.

These are pure data containers with zero logic. Permission rules live in
auth/authorization.py; persistence lives in community/store.py.

Accounts are referenced by id only. This package never imports auth/.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MembershipRole(str, Enum):
    member = "member"
    moderator = "moderator"
    owner = "owner"


@dataclass
class Community:
    """A named community. owner_id also holds an owner Membership row.

    id is None before the record is written to the database.
    """

    name: str
    owner_id: int
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass
class Membership:
    """The role an account holds inside one community. Unique per pair."""

    community_id: int
    account_id: int
    role: MembershipRole = MembershipRole.member
    joined_at: str = ""


@dataclass
class Ban:
    """An account barred from a community. Its membership row is gone."""

    community_id: int
    account_id: int
    banned_by: int
    created_at: str = ""


@dataclass
class Post:
    """A post in a community. Deletion is soft (is_deleted)."""

    community_id: int
    author_id: int
    content: str
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    is_deleted: bool = False
