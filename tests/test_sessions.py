"""
tests/test_sessions.py -- Refresh-token lineage, rotation and reuse detection.

Covers:
  - R1 -> R2 rotation marks R1 rotated and links the lineage
  - Replaying R1 after rotation -> Reused, and R2 then fails with Revoked
  - Only one active session per lineage at any time
  - Revoke / revoke_all / list_active
  - Only replaying a rotated token logs a reuse warning
  - Two threads rotating the same token: exactly one wins, the other gets
    Reused and the lineage ends up fully revoked
"""

from __future__ import annotations

import logging
import threading

import pytest

from auth.errors import Expired, Malformed, Reused, Revoked
from auth.gateway import build_gateway
from auth.models import SessionState
from auth.store import AuthStore
from auth.tokens import hash_refresh_token
from community.store import CommunityStore
from conftest import make_settings

PASSWORD = "correct-horse-7"


@pytest.fixture
def logged_in(gateway):
    gateway.signup("alice@example.com", PASSWORD)
    return gateway.login("alice@example.com", PASSWORD)


def _session(gateway, refresh_token):
    return gateway.sessions.get(hash_refresh_token(refresh_token))


# ---------------------------------------------------------------------------
# Rotation
# ---------------------------------------------------------------------------


def test_rotation_links_lineage(gateway, logged_in):
    r1 = logged_in.refresh_token
    r2 = gateway.refresh(r1).refresh_token
    assert r2 != r1

    first = _session(gateway, r1)
    second = _session(gateway, r2)
    assert first.state is SessionState.rotated
    assert first.replaced_by == second.id
    assert second.state is SessionState.active
    assert second.parent_id == first.id
    assert second.family_id == first.family_id == first.id


def test_rotation_keeps_one_active_session_per_lineage(gateway, logged_in):
    token = logged_in.refresh_token
    for _ in range(4):
        token = gateway.refresh(token).refresh_token
    account_id = logged_in.account_id
    active = gateway.sessions.list_active(account_id)
    assert [s.id for s in active] == [hash_refresh_token(token)]


def test_replay_after_rotation_is_reused_and_revokes_lineage(gateway, logged_in):
    r1 = logged_in.refresh_token
    r2 = gateway.refresh(r1).refresh_token

    with pytest.raises(Reused):
        gateway.refresh(r1)
    assert _session(gateway, r2).state is SessionState.revoked

    with pytest.raises(Revoked):
        gateway.refresh(r2)


def test_reuse_leaves_other_lineages_alone(gateway, logged_in):
    other = gateway.login("alice@example.com", PASSWORD)
    r1 = logged_in.refresh_token
    gateway.refresh(r1)

    with pytest.raises(Reused):
        gateway.refresh(r1)
    assert _session(gateway, other.refresh_token).state is SessionState.active
    gateway.refresh(other.refresh_token)


def test_refresh_after_expiry(gateway, logged_in, clock):
    clock.advance(7 * 24 * 3600)
    with pytest.raises(Expired):
        gateway.refresh(logged_in.refresh_token)


def test_rotated_child_gets_full_lifetime(gateway, logged_in, clock):
    clock.advance(3600)
    r2 = gateway.refresh(logged_in.refresh_token).refresh_token
    clock.advance(7 * 24 * 3600 - 60)
    gateway.refresh(r2)


def test_record_with_unknown_parent_is_malformed(gateway, logged_in, clock):
    with pytest.raises(Malformed):
        gateway.sessions.record(logged_in.account_id, "child", clock(), parent_id="missing")


# ---------------------------------------------------------------------------
# Revocation
# ---------------------------------------------------------------------------


def test_logout_revokes_session(gateway, logged_in):
    gateway.logout(logged_in.refresh_token)
    assert not gateway.sessions.is_active(hash_refresh_token(logged_in.refresh_token))
    with pytest.raises(Revoked):
        gateway.refresh(logged_in.refresh_token)


def test_replay_after_logout_is_not_reported_as_theft(gateway, logged_in, caplog):
    gateway.logout(logged_in.refresh_token)
    with caplog.at_level(logging.INFO, logger="agora.auth.sessions"):
        with pytest.raises(Revoked):
            gateway.refresh(logged_in.refresh_token)
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert any("Revoked refresh token presented" in r.getMessage() for r in caplog.records)


def test_replay_after_rotation_logs_reuse_warning(gateway, logged_in, caplog):
    gateway.refresh(logged_in.refresh_token)
    with caplog.at_level(logging.INFO, logger="agora.auth.sessions"):
        with pytest.raises(Reused):
            gateway.refresh(logged_in.refresh_token)
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "reuse detected" in warnings[0].getMessage()


def test_logout_unknown_token_is_noop(gateway):
    gateway.logout("never-issued")


def test_revoke_is_idempotent(gateway, logged_in):
    session_id = hash_refresh_token(logged_in.refresh_token)
    assert gateway.sessions.revoke(session_id) is True
    assert gateway.sessions.revoke(session_id) is False


def test_revoke_all(gateway, logged_in):
    gateway.login("alice@example.com", PASSWORD)
    account = gateway.credentials.get_account(logged_in.account_id)
    assert len(gateway.sessions.list_active(account.id)) == 2

    assert gateway.logout_all(account) == 2
    assert gateway.sessions.list_active(account.id) == []


def test_detect_reuse_on_active_session_is_false(gateway, logged_in):
    assert gateway.sessions.detect_reuse(hash_refresh_token(logged_in.refresh_token)) is False
    assert gateway.sessions.detect_reuse("missing") is False


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_rotation_single_winner(tmp_path):
    """Two threads present the same refresh token at the same time.

    Uses file-backed SQLite: shared-cache memory databases report table
    locks instead of waiting on the busy timeout.
    """
    auth_store = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}", timeout=10.0)
    community_store = CommunityStore(f"sqlite:///{tmp_path / 'community.db'}")
    gateway = build_gateway(auth_store, community_store, make_settings())
    try:
        gateway.signup("alice@example.com", PASSWORD)
        token = gateway.login("alice@example.com", PASSWORD).refresh_token

        barrier = threading.Barrier(2)
        results: list = []
        lock = threading.Lock()

        def rotate() -> None:
            barrier.wait()
            try:
                outcome = gateway.refresh(token)
            except (Reused, Revoked) as exc:
                outcome = exc
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=rotate) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 1
        assert isinstance(losers[0], Reused)

        # The loser's reuse report revoked the winner's new session too.
        account_id = winners[0].account_id
        assert gateway.sessions.list_active(account_id) == []
        with pytest.raises(Revoked):
            gateway.refresh(winners[0].refresh_token)
    finally:
        community_store.close()
        auth_store.close()
