"""
community/store.py -- SQLAlchemy-backed persistence for communities, memberships and posts.

Uses SQLAlchemy Core (not ORM) so the dataclasses in community/models.py
remain the authoritative domain representation. Swapping SQLite for
PostgreSQL is a connection string change.

Pattern: Repository + Data Mapper. CommunityStore is the repository; the
_row_to_* functions are the mappers. The authorization engine reads
memberships, bans and post authorship through it.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = CommunityStore("sqlite:///:memory:")
    community_id = store.create_community(Community(name="python", owner_id=1))
    store.add_membership(Membership(community_id=community_id, account_id=2))
    post_id = store.create_post(Post(community_id=community_id, author_id=2, content="hi"))
    store.close()
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, UniqueConstraint, create_engine, event, select
from sqlalchemy.engine import Engine

from community.models import Ban, Community, Membership, MembershipRole, Post

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'agora_community.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_communities = Table(
    "communities",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("owner_id", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
)

_memberships = Table(
    "memberships",
    metadata,
    Column("community_id", Integer, nullable=False),
    Column("account_id", Integer, nullable=False),
    Column("role", String(20), nullable=False, server_default="member"),
    Column("joined_at", String(32), nullable=False),
    UniqueConstraint("community_id", "account_id", name="uq_membership_pair"),
)

_bans = Table(
    "bans",
    metadata,
    Column("community_id", Integer, nullable=False),
    Column("account_id", Integer, nullable=False),
    Column("banned_by", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("community_id", "account_id", name="uq_ban_pair"),
)

_posts = Table(
    "posts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("community_id", Integer, nullable=False, index=True),
    Column("author_id", Integer, nullable=False),
    Column("content", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("is_deleted", Integer, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CommunityStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Communities
    # ------------------------------------------------------------------

    def create_community(self, community: Community) -> int:
        """Insert a community and its owner membership in one transaction.

        Raises sqlalchemy.exc.IntegrityError if the name is taken; in that
        case no membership row is written either.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _communities.insert().values(name=community.name, owner_id=community.owner_id, created_at=now)
            )
            community_id = result.inserted_primary_key[0]
            conn.execute(
                _memberships.insert().values(
                    community_id=community_id,
                    account_id=community.owner_id,
                    role=MembershipRole.owner.value,
                    joined_at=now,
                )
            )
        return community_id

    def get_community(self, community_id: int) -> Optional[Community]:
        with self.engine.connect() as conn:
            row = conn.execute(_communities.select().where(_communities.c.id == community_id)).fetchone()
        return _row_to_community(row) if row is not None else None

    def get_community_by_name(self, name: str) -> Optional[Community]:
        with self.engine.connect() as conn:
            row = conn.execute(_communities.select().where(_communities.c.name == name)).fetchone()
        return _row_to_community(row) if row is not None else None

    # ------------------------------------------------------------------
    # Memberships and bans
    # ------------------------------------------------------------------

    def add_membership(self, membership: Membership) -> None:
        """Insert a membership. Raises IntegrityError if the pair already exists."""
        with self.engine.connect() as conn:
            conn.execute(
                _memberships.insert().values(
                    community_id=membership.community_id,
                    account_id=membership.account_id,
                    role=membership.role.value,
                    joined_at=membership.joined_at or _now_iso(),
                )
            )
            conn.commit()

    def get_membership(self, community_id: int, account_id: int) -> Optional[Membership]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _memberships.select().where(
                    (_memberships.c.community_id == community_id) & (_memberships.c.account_id == account_id)
                )
            ).fetchone()
        return _row_to_membership(row) if row is not None else None

    def list_members(self, community_id: int) -> list[Membership]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _memberships.select()
                .where(_memberships.c.community_id == community_id)
                .order_by(_memberships.c.joined_at)
            ).fetchall()
        return [_row_to_membership(r) for r in rows]

    def set_membership_role(self, community_id: int, account_id: int, role: MembershipRole) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _memberships.update()
                .where((_memberships.c.community_id == community_id) & (_memberships.c.account_id == account_id))
                .values(role=role.value)
            )
            conn.commit()
        return result.rowcount > 0

    def remove_membership(self, community_id: int, account_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _memberships.delete().where(
                    (_memberships.c.community_id == community_id) & (_memberships.c.account_id == account_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def ban_member(self, ban: Ban) -> None:
        """Remove the membership and record the ban atomically. Re-banning is a no-op."""
        with self.engine.begin() as conn:
            conn.execute(
                _memberships.delete().where(
                    (_memberships.c.community_id == ban.community_id) & (_memberships.c.account_id == ban.account_id)
                )
            )
            exists = conn.execute(
                select(_bans.c.account_id).where(
                    (_bans.c.community_id == ban.community_id) & (_bans.c.account_id == ban.account_id)
                )
            ).first()
            if exists is None:
                conn.execute(
                    _bans.insert().values(
                        community_id=ban.community_id,
                        account_id=ban.account_id,
                        banned_by=ban.banned_by,
                        created_at=ban.created_at or _now_iso(),
                    )
                )

    def is_banned(self, community_id: int, account_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_bans.c.account_id).where(
                    (_bans.c.community_id == community_id) & (_bans.c.account_id == account_id)
                )
            ).first()
        return row is not None

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def create_post(self, post: Post) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _posts.insert().values(
                    community_id=post.community_id,
                    author_id=post.author_id,
                    content=post.content,
                    created_at=now,
                    updated_at=now,
                    is_deleted=0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_post(self, post_id: int) -> Optional[Post]:
        with self.engine.connect() as conn:
            row = conn.execute(_posts.select().where(_posts.c.id == post_id)).fetchone()
        return _row_to_post(row) if row is not None else None

    def soft_delete_post(self, post_id: int) -> bool:
        """Flag a post deleted. Returns False if missing or already deleted."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _posts.update()
                .where((_posts.c.id == post_id) & (_posts.c.is_deleted == 0))
                .values(is_deleted=1, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_community(row) -> Community:
    return Community(id=row.id, name=row.name, owner_id=row.owner_id, created_at=row.created_at)


def _row_to_membership(row) -> Membership:
    return Membership(
        community_id=row.community_id,
        account_id=row.account_id,
        role=MembershipRole(row.role),
        joined_at=row.joined_at,
    )


def _row_to_post(row) -> Post:
    return Post(
        id=row.id,
        community_id=row.community_id,
        author_id=row.author_id,
        content=row.content,
        created_at=row.created_at,
        updated_at=row.updated_at,
        is_deleted=bool(row.is_deleted),
    )
