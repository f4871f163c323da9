"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as community/store.py).
AuthStore is the repository; _row_to_account / _row_to_session are the
mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  The password hash column is read by exactly two methods, get_credentials()
  and get_password_hash(), which only auth/credentials.py calls. The Account
  mapper drops it.

  refresh_sessions.id is SHA-256 of the opaque token. A stolen database
  dump does not yield usable refresh tokens.

Concurrency:
  rotate_session() is the single serialization point of the subsystem. Its
  first statement is a conditional UPDATE (state = 'active' and not expired),
  so the database write lock decides which of two racing rotations wins. The
  loser sees rowcount == 0 and nothing is inserted on its behalf.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account, GlobalRole, RefreshSession, SessionState

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'agora_auth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="member"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_refresh_sessions = Table(
    "refresh_sessions",
    _metadata,
    Column("id", String(64), primary_key=True),  # SHA-256 hex of the raw token
    Column("account_id", Integer, nullable=False, index=True),
    Column("family_id", String(64), nullable=False, index=True),
    Column("parent_id", String(64)),
    Column("replaced_by", String(64)),
    Column("state", String(16), nullable=False, server_default="active"),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create an engine; SQLite gets cross-thread use, a lock timeout and WAL."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Account and RefreshSession records.

    Usage:
        store = AuthStore("sqlite:///:memory:")
        account_id = store.create_account("alice@example.com", hashed, "member", now_iso)
        store.insert_session(session)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> None:
        self.engine: Engine = make_engine(db_url, timeout)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Cheap liveness probe used by the health endpoint."""
        with self.engine.connect() as conn:
            return conn.execute(select(1)).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(self, identity: str, hashed_password: str, role: str, created_at: str) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the identity already exists.
        The UNIQUE constraint, not a prior lookup, is the duplicate check, so
        two concurrent signups for one identity can not both succeed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    identity=identity,
                    hashed_password=hashed_password,
                    role=role,
                    created_at=created_at,
                    is_active=1,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_account(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_identity(self, identity: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.identity == identity)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_credentials(self, identity: str) -> tuple[Account, str] | None:
        """Return (account, password hash) for identity. Credential Store only."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.identity == identity)).fetchone()
        if row is None:
            return None
        return _row_to_account(row), row.hashed_password

    def get_password_hash(self, account_id: int) -> str | None:
        """Credential Store only."""
        with self.engine.connect() as conn:
            return conn.execute(
                select(_accounts.c.hashed_password).where(_accounts.c.id == account_id)
            ).scalar()

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: role, is_active, hashed_password, last_login.
        is_active must be passed as bool; role as GlobalRole or str.

        Returns True if a row was updated, False if account_id was not found.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update().where(_accounts.c.id == account_id).values(**_account_values(fields))
            )
            conn.commit()
        return result.rowcount > 0

    def update_account_unless_last_admin(self, account_id: int, **fields) -> bool:
        """update_account() that only applies while another active admin remains.

        The admin count is a subquery inside the UPDATE itself, so two admins
        demoting each other concurrently can not both succeed: the second
        statement runs after the first commits and sees one admin left.
        Returns False if the account is missing or is the last active admin.
        """
        others = _accounts.alias("other_admins")
        other_admins = (
            select(func.count())
            .select_from(others)
            .where(
                (others.c.role == GlobalRole.admin.value)
                & (others.c.is_active == 1)
                & (others.c.id != account_id)
            )
            .scalar_subquery()
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (other_admins >= 1))
                .values(**_account_values(fields))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def insert_session(self, session: RefreshSession) -> None:
        """Insert a lineage root (no parent to transition)."""
        with self.engine.connect() as conn:
            conn.execute(_refresh_sessions.insert().values(**_session_values(session)))
            conn.commit()

    def get_session(self, session_id: str) -> RefreshSession | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_sessions.select().where(_refresh_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def rotate_session(self, parent_id: str, child: RefreshSession, now: str) -> bool:
        """Atomically mark parent rotated and insert child.

        Both statements run in one transaction: either the parent moves
        active -> rotated AND the child exists, or neither happens.
        Returns False (and writes nothing) when the parent was not active or
        had already expired at `now`.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where(
                    (_refresh_sessions.c.id == parent_id)
                    & (_refresh_sessions.c.state == SessionState.active.value)
                    & (_refresh_sessions.c.expires_at > now)
                )
                .values(state=SessionState.rotated.value, replaced_by=child.id)
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_sessions.insert().values(**_session_values(child)))
        return True

    def revoke_session(self, session_id: str, now: str) -> bool:
        """active -> revoked for one session. Returns True if a row changed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where(
                    (_refresh_sessions.c.id == session_id)
                    & (_refresh_sessions.c.state == SessionState.active.value)
                )
                .values(state=SessionState.revoked.value, revoked_at=now)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_family(self, family_id: str, now: str) -> int:
        """Revoke every still-active session in a lineage. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where(
                    (_refresh_sessions.c.family_id == family_id)
                    & (_refresh_sessions.c.state == SessionState.active.value)
                )
                .values(state=SessionState.revoked.value, revoked_at=now)
            )
            conn.commit()
        return result.rowcount

    def revoke_account_sessions(self, account_id: int, now: str) -> int:
        """Revoke every active session of an account. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_sessions.update()
                .where(
                    (_refresh_sessions.c.account_id == account_id)
                    & (_refresh_sessions.c.state == SessionState.active.value)
                )
                .values(state=SessionState.revoked.value, revoked_at=now)
            )
            conn.commit()
        return result.rowcount

    def list_active_sessions(self, account_id: int, now: str) -> list[RefreshSession]:
        """Active, unexpired sessions of an account, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_sessions.select()
                .where(
                    (_refresh_sessions.c.account_id == account_id)
                    & (_refresh_sessions.c.state == SessionState.active.value)
                    & (_refresh_sessions.c.expires_at > now)
                )
                .order_by(_refresh_sessions.c.issued_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        identity=row.identity,
        role=GlobalRole(row.role),
        created_at=row.created_at,
        last_login=row.last_login,
        is_active=bool(row.is_active),
    )


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        id=row.id,
        account_id=row.account_id,
        family_id=row.family_id,
        parent_id=row.parent_id,
        replaced_by=row.replaced_by,
        state=SessionState(row.state),
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked_at=row.revoked_at,
    )


def _session_values(session: RefreshSession) -> dict:
    return {
        "id": session.id,
        "account_id": session.account_id,
        "family_id": session.family_id,
        "parent_id": session.parent_id,
        "replaced_by": session.replaced_by,
        "state": session.state.value,
        "issued_at": session.issued_at,
        "expires_at": session.expires_at,
        "revoked_at": session.revoked_at,
    }


def _account_values(fields: dict) -> dict:
    values = dict(fields)
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0
    if isinstance(values.get("role"), GlobalRole):
        values["role"] = values["role"].value
    return values
