"""
core/clock.py -- Clock source for expiry computation.

Every service that computes an expiry takes a `clock` callable in its
constructor and defaults to utc_now(). Tests pass a frozen or stepping clock
instead of sleeping.

Timestamps are persisted as ISO 8601 strings with fixed microsecond precision
and an explicit UTC offset, so lexicographic order in SQL equals time order.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Serialize an aware datetime as sortable UTC ISO 8601."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)
