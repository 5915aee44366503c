"""
Per-identity scan quota guard.

Each identity key (``user:<id>`` or ``ip:<addr>``) owns one QuotaState row
holding an hourly and a daily counter with their window starts.  A call
to :func:`check_quota`:

1. resets a window whose length has fully elapsed,
2. denies when the hourly, then the daily, ceiling is already reached,
3. otherwise increments both counters and persists them.

Read-modify-write on one identity is strictly serialized: in-process by a
lock stripe chosen by the identity key, across processes by a row lock
(``SELECT ... FOR UPDATE`` where the database supports it).  The stripe
pool has a fixed size, so arbitrary client keys never grow memory; two
identities only contend when they share a stripe.  The guard knows
nothing about tiers; limits come with each call.

Usage:
    from mailhealth.utils.rate_limit import check_quota

    decision = check_quota("ip:203.0.113.7", hourly_limit=5, daily_limit=300)
    if not decision.allowed:
        ...  # respond 429 with decision.retry_after
"""

from __future__ import annotations

import logging
import math
import threading
import time
import zlib
from dataclasses import dataclass
from typing import Final

from sqlalchemy.exc import IntegrityError

from mailhealth import db
from mailhealth.models import QuotaState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

HOUR_WINDOW: Final[int] = 3600
DAY_WINDOW: Final[int] = 86400

# ---------------------------------------------------------------------------
# Lock stripes
# ---------------------------------------------------------------------------

LOCK_STRIPES: Final[int] = 256
_locks: Final[tuple[threading.Lock, ...]] = tuple(threading.Lock() for _ in range(LOCK_STRIPES))


def _identity_lock(identity_key: str) -> threading.Lock:
    """Return the lock serializing updates for *identity_key*."""
    return _locks[zlib.crc32(identity_key.encode("utf-8")) % LOCK_STRIPES]


# ---------------------------------------------------------------------------
# Row access
# ---------------------------------------------------------------------------


def _select_state(identity_key: str) -> QuotaState | None:
    return db.session.execute(
        db.select(QuotaState)
        .where(QuotaState.identity_key == identity_key)
        .with_for_update()
    ).scalar_one_or_none()


def _load_state(identity_key: str, now: float) -> QuotaState:
    """Return the locked row for *identity_key*, creating it on first use.

    Another process may insert the same row between our SELECT and INSERT;
    the loser rolls back and locks the winner's row instead.
    """
    state = _select_state(identity_key)
    if state is not None:
        return state

    state = QuotaState(
        identity_key=identity_key,
        hour_count=0,
        hour_window_start=now,
        day_count=0,
        day_window_start=now,
    )
    db.session.add(state)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.debug("Quota row for %s created concurrently; reloading", identity_key)
        state = _select_state(identity_key)
        if state is None:
            raise
    return state


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a quota check; retry_after is set only on denial."""

    allowed: bool
    retry_after: int | None = None


def _retry_after(window_start: float, window: int, now: float) -> int:
    return max(1, math.ceil(window_start + window - now))


def check_quota(
    identity_key: str,
    hourly_limit: int,
    daily_limit: int,
    now: float | None = None,
) -> QuotaDecision:
    """Consume one scan from *identity_key*'s quota if any is left.

    Args:
        identity_key: ``user:<id>`` or ``ip:<addr>``.
        hourly_limit: Scans allowed per rolling hour window.
        daily_limit: Scans allowed per rolling day window.
        now: Current epoch seconds; defaults to time.time().

    Returns:
        QuotaDecision(allowed=True) after incrementing both counters, or
        QuotaDecision(allowed=False, retry_after=seconds) without touching
        the counters.
    """
    now = time.time() if now is None else now

    with _identity_lock(identity_key):
        state = _load_state(identity_key, now)

        if now - state.hour_window_start >= HOUR_WINDOW:
            state.hour_count = 0
            state.hour_window_start = now
        if now - state.day_window_start >= DAY_WINDOW:
            state.day_count = 0
            state.day_window_start = now

        decision: QuotaDecision
        if state.hour_count >= hourly_limit:
            decision = QuotaDecision(False, _retry_after(state.hour_window_start, HOUR_WINDOW, now))
        elif state.day_count >= daily_limit:
            decision = QuotaDecision(False, _retry_after(state.day_window_start, DAY_WINDOW, now))
        else:
            state.hour_count += 1
            state.day_count += 1
            decision = QuotaDecision(True)

        db.session.commit()

    if not decision.allowed:
        logger.warning(
            "Quota exceeded: identity=%s hourly=%d daily=%d retry_after=%ds",
            identity_key, hourly_limit, daily_limit, decision.retry_after,
        )
    return decision


def reset_quota(identity_key: str) -> None:
    """Delete the stored counters for *identity_key*."""
    with _identity_lock(identity_key):
        db.session.execute(db.delete(QuotaState).where(QuotaState.identity_key == identity_key))
        db.session.commit()
