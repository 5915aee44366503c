"""
Unit tests for mailhealth/utils/rate_limit.py
"""

from __future__ import annotations

import threading
from unittest.mock import patch

from mailhealth.models import QuotaState
from mailhealth.utils import rate_limit
from mailhealth.utils.rate_limit import DAY_WINDOW, HOUR_WINDOW, check_quota, reset_quota

_NOW = 1_700_000_000.0


def _state(db, identity_key: str) -> QuotaState:
    db.session.expire_all()
    return db.session.get(QuotaState, identity_key)


class TestCheckQuota:
    def test_hourly_limit_denies_third_call(self, db):
        assert check_quota("ip:203.0.113.7", 2, 300, now=_NOW).allowed
        assert check_quota("ip:203.0.113.7", 2, 300, now=_NOW + 1).allowed

        denied = check_quota("ip:203.0.113.7", 2, 300, now=_NOW + 60)
        assert denied.allowed is False
        assert 0 < denied.retry_after <= HOUR_WINDOW
        assert denied.retry_after == HOUR_WINDOW - 60

    def test_denial_does_not_increment(self, db):
        for offset in range(3):
            check_quota("user:42", 2, 300, now=_NOW + offset)

        state = _state(db, "user:42")
        assert state.hour_count == 2
        assert state.day_count == 2

    def test_hour_window_rolls_over(self, db):
        check_quota("user:1", 1, 300, now=_NOW)
        assert not check_quota("user:1", 1, 300, now=_NOW + 10).allowed
        assert check_quota("user:1", 1, 300, now=_NOW + HOUR_WINDOW).allowed

        state = _state(db, "user:1")
        assert state.hour_count == 1
        assert state.day_count == 2

    def test_daily_limit_reports_day_retry(self, db):
        check_quota("user:2", 10, 1, now=_NOW)
        denied = check_quota("user:2", 10, 1, now=_NOW + HOUR_WINDOW * 2)

        assert denied.allowed is False
        assert denied.retry_after == DAY_WINDOW - HOUR_WINDOW * 2

    def test_retry_after_is_at_least_one(self, db):
        check_quota("user:3", 1, 300, now=_NOW)
        denied = check_quota("user:3", 1, 300, now=_NOW + HOUR_WINDOW - 0.2)
        assert denied.retry_after == 1

    def test_identities_are_independent(self, db):
        assert check_quota("ip:198.51.100.1", 1, 300, now=_NOW).allowed
        assert check_quota("ip:198.51.100.2", 1, 300, now=_NOW).allowed
        assert not check_quota("ip:198.51.100.1", 1, 300, now=_NOW).allowed

    def test_reset_quota(self, db):
        check_quota("user:4", 1, 300, now=_NOW)
        reset_quota("user:4")
        assert check_quota("user:4", 1, 300, now=_NOW).allowed

    def test_concurrent_callers_never_exceed_limit(self, app, db):
        outcomes: list[bool] = []
        outcomes_lock = threading.Lock()

        def _worker():
            with app.app_context():
                allowed = check_quota("ip:192.0.2.50", 5, 300).allowed
            with outcomes_lock:
                outcomes.append(allowed)

        threads = [threading.Thread(target=_worker) for _ in range(12)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(True) == 5
        assert _state(db, "ip:192.0.2.50").hour_count == 5


class TestRowCreation:
    def test_concurrent_insert_reuses_existing_row(self, db):
        # Another process inserted the row after our SELECT missed it.
        db.session.execute(
            db.insert(QuotaState).values(
                identity_key="ip:192.0.2.77",
                hour_count=2,
                hour_window_start=_NOW,
                day_count=2,
                day_window_start=_NOW,
            )
        )
        db.session.commit()

        calls = []
        real_select = rate_limit._select_state

        def _select(identity_key):
            calls.append(identity_key)
            return None if len(calls) == 1 else real_select(identity_key)

        with patch("mailhealth.utils.rate_limit._select_state", side_effect=_select):
            decision = check_quota("ip:192.0.2.77", 5, 300, now=_NOW + 1)

        assert decision.allowed
        assert len(calls) == 2
        assert db.session.query(QuotaState).count() == 1
        assert _state(db, "ip:192.0.2.77").hour_count == 3


class TestLockStripes:
    def test_same_key_same_lock(self):
        assert rate_limit._identity_lock("ip:203.0.113.7") is rate_limit._identity_lock("ip:203.0.113.7")

    def test_pool_does_not_grow_with_new_keys(self):
        for n in range(1000):
            rate_limit._identity_lock(f"anon-daily:198.51.{n // 256}.{n % 256}")
        assert len(rate_limit._locks) == rate_limit.LOCK_STRIPES
