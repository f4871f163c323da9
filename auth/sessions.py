"""
auth/sessions.py -- Session Registry: refresh-token lineage and revocation.

A lineage starts at login (record() without a parent) and grows by one link
per rotation (record() with a parent). Per session:

    active --rotate--> rotated     (terminal: the token is dead)
    active --revoke--> revoked     (terminal: logout, ban, reuse, password change)

At most one session per lineage is active at any time, because a child is
only inserted in the same transaction that moves its parent out of active.

Reuse detection: a presented token whose session is rotated or revoked means
someone holds a copy of a consumed token. The whole lineage (every session
sharing the root's family_id) is revoked, so the attacker's and the victim's
copies die together and the account must log in again.

Layer rule: no imports from api/ or community/.
"""

from __future__ import annotations

import logging
from datetime import datetime

from auth.errors import Expired, Malformed, Reused, Revoked
from auth.models import RefreshSession, SessionState
from auth.store import AuthStore
from core.clock import Clock, from_iso, to_iso, utc_now

logger = logging.getLogger("agora.auth.sessions")


class SessionRegistry:
    def __init__(self, store: AuthStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        account_id: int,
        session_id: str,
        expires_at: datetime,
        parent_id: str | None = None,
    ) -> RefreshSession:
        """Persist a refresh session.

        Without parent_id a new lineage is rooted at this session. With
        parent_id the parent must still be active: it moves to rotated and
        the new session joins its lineage, atomically. If the parent is no
        longer active the failure is classified and raised:
          rotated  -> lineage revoked, Reused
          revoked  -> Revoked
          expired  -> Expired
          missing  -> Malformed
        """
        now = self._clock()
        if parent_id is None:
            session = RefreshSession(
                id=session_id,
                account_id=account_id,
                family_id=session_id,
                issued_at=to_iso(now),
                expires_at=to_iso(expires_at),
            )
            self._store.insert_session(session)
            logger.info("Session lineage started (account_id=%s family=%s)", account_id, session_id[:12])
            return session

        parent = self._store.get_session(parent_id)
        if parent is None:
            raise Malformed()
        child = RefreshSession(
            id=session_id,
            account_id=account_id,
            family_id=parent.family_id,
            parent_id=parent_id,
            issued_at=to_iso(now),
            expires_at=to_iso(expires_at),
        )
        if self._store.rotate_session(parent_id, child, to_iso(now)):
            return child
        # Lost the conditional update: classify against the committed state.
        self._raise_for_inactive(self._store.get_session(parent_id), now)
        raise Revoked()  # unreachable: an active, unexpired parent would have rotated

    def get(self, session_id: str) -> RefreshSession | None:
        return self._store.get_session(session_id)

    def revoke(self, session_id: str) -> bool:
        """Revoke one session. Unknown or already-dead ids are a no-op."""
        revoked = self._store.revoke_session(session_id, to_iso(self._clock()))
        if revoked:
            logger.info("Session revoked (session=%s)", session_id[:12])
        return revoked

    def revoke_all(self, account_id: int) -> int:
        """Revoke every active session of an account (logout everywhere)."""
        count = self._store.revoke_account_sessions(account_id, to_iso(self._clock()))
        logger.info("All sessions revoked (account_id=%s count=%d)", account_id, count)
        return count

    def is_active(self, session_id: str) -> bool:
        session = self._store.get_session(session_id)
        return session is not None and _is_live(session, self._clock())

    def detect_reuse(self, session_id: str) -> bool:
        """Return True if session_id was already rotated or revoked.

        On True the lineage rooted at the oldest ancestor is revoked. Only a
        rotated token is evidence of theft and logs a warning; a revoked one is
        usually a client retrying after logout.
        """
        session = self._store.get_session(session_id)
        if session is None or session.state is SessionState.active:
            return False
        count = self._store.revoke_family(session.family_id, to_iso(self._clock()))
        if session.state is SessionState.rotated:
            logger.warning(
                "Refresh token reuse detected (account_id=%s family=%s revoked=%d)",
                session.account_id,
                session.family_id[:12],
                count,
            )
        else:
            logger.info(
                "Revoked refresh token presented (account_id=%s family=%s revoked=%d)",
                session.account_id,
                session.family_id[:12],
                count,
            )
        return True

    def list_active(self, account_id: int) -> list[RefreshSession]:
        return self._store.list_active_sessions(account_id, to_iso(self._clock()))

    def check_presentable(self, session: RefreshSession) -> None:
        """Raise the taxonomy error for a session that can not be rotated."""
        if not _is_live(session, self._clock()):
            self._raise_for_inactive(session, self._clock())

    def _raise_for_inactive(self, session: RefreshSession | None, now: datetime) -> None:
        if session is None:
            raise Malformed()
        if session.state is SessionState.rotated:
            self.detect_reuse(session.id)
            raise Reused()
        if session.state is SessionState.revoked:
            self.detect_reuse(session.id)
            raise Revoked()
        if from_iso(session.expires_at) <= now:
            raise Expired()


def _is_live(session: RefreshSession, now: datetime) -> bool:
    return session.state is SessionState.active and from_iso(session.expires_at) > now
