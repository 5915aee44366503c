"""
Unit tests for mailhealth/checker/engine.py

Check runners are replaced with instant fakes through patch.dict on the
CHECK_RUNNERS registry, so these tests exercise wave ordering, caching,
error isolation and aggregation without any DNS or HTTP traffic.
"""

from __future__ import annotations

import re
import threading
from unittest.mock import patch

import pytest

from mailhealth.checker import engine
from mailhealth.checker.engine import (
    CHECK_RUNNERS,
    WAVES,
    new_scan_id,
    run_check,
    run_check_cached,
    run_scan,
    run_widget_scan,
)
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import CheckResult, CheckType

_BIMI_ALL = "mailhealth.checker.engine.check_bimi_all"

_SETTINGS = ScanSettings(max_workers=8)


def _default_result(check_type: CheckType) -> CheckResult:
    if check_type == CheckType.BLACKLIST:
        return CheckResult("pass", 100, {"reputation_tier": "clean"})
    return CheckResult("pass", 100, {"check": check_type.value})


class _FakeRunners:
    """Records which runners were invoked; results can be overridden per check."""

    def __init__(self, overrides: dict[CheckType, object] | None = None) -> None:
        self.overrides = overrides or {}
        self.calls: list[CheckType] = []
        self.bimi_pair_calls = 0
        self._lock = threading.Lock()

    def _runner(self, check_type: CheckType):
        def run(domain, settings, selectors):
            with self._lock:
                self.calls.append(check_type)
            outcome = self.overrides.get(check_type, _default_result(check_type))
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        return run

    def registry(self) -> dict:
        return {ct: self._runner(ct) for ct in CheckType}

    def bimi_all(self, domain, settings):
        with self._lock:
            self.bimi_pair_calls += 1
        return _default_result(CheckType.BIMI_RECORD), _default_result(CheckType.BIMI_VMC)


@pytest.fixture
def fakes():
    runners = _FakeRunners()
    with patch.dict(CHECK_RUNNERS, runners.registry()), patch(_BIMI_ALL, side_effect=runners.bimi_all):
        yield runners


# ---------------------------------------------------------------------------
# Scan ids
# ---------------------------------------------------------------------------


def test_scan_id_format():
    scan_id = new_scan_id()
    assert re.match(r"^scan_[0-9a-z]+_[0-9a-z]{9}$", scan_id)
    assert new_scan_id() != scan_id


# ---------------------------------------------------------------------------
# Single checks
# ---------------------------------------------------------------------------


class TestRunCheck:
    def test_exception_becomes_fail_result(self):
        runners = _FakeRunners({CheckType.SPF: RuntimeError("resolver exploded")})
        with patch.dict(CHECK_RUNNERS, runners.registry()):
            result = run_check(CheckType.SPF, "example.com", _SETTINGS)

        assert result.status == "fail"
        assert result.score == 0
        assert "resolver exploded" in result.error
        assert result.recommendations

    def test_accepts_string_check_type(self, fakes):
        assert run_check("mx", "example.com", _SETTINGS).status == "pass"
        assert fakes.calls == [CheckType.MX]

    def test_cached_second_call(self, db, fakes):
        first, first_cached = run_check_cached(CheckType.DMARC, "example.com", _SETTINGS)
        second, second_cached = run_check_cached(CheckType.DMARC, "example.com", _SETTINGS)

        assert (first_cached, second_cached) == (False, True)
        assert second == first
        assert fakes.calls == [CheckType.DMARC]

    def test_custom_dkim_selectors_bypass_cache(self, db, fakes):
        run_check_cached(CheckType.DKIM, "example.com", _SETTINGS, selectors=["mta1"])
        _, cached = run_check_cached(CheckType.DKIM, "example.com", _SETTINGS, selectors=["mta1"])

        assert cached is False
        assert fakes.calls == [CheckType.DKIM, CheckType.DKIM]

    def test_max_age_zero_always_runs(self, db, fakes):
        run_check_cached(CheckType.MX, "example.com", _SETTINGS, max_age=0)
        _, cached = run_check_cached(CheckType.MX, "example.com", _SETTINGS, max_age=0)

        assert cached is False
        assert fakes.calls == [CheckType.MX, CheckType.MX]


# ---------------------------------------------------------------------------
# Full scan
# ---------------------------------------------------------------------------


class TestRunScan:
    def test_every_check_reported(self, db, fakes):
        report = run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))

        assert list(report.results) == list(CheckType)
        assert report.config_score == 100
        assert report.final_score == 100
        assert report.reputation_tier == "clean"
        data = report.to_dict()
        assert data["status"] == "completed"
        assert set(data["checks"]) == {ct.value for ct in CheckType}

    def test_waves_arrive_in_order(self, db, fakes):
        arrivals: list[CheckType] = []
        run_scan(
            "example.com",
            _SETTINGS,
            wave_delays=(0.05, 0.1),
            on_update=lambda ct, result, summary: arrivals.append(ct),
        )

        first, second, third = (set(w) for w in WAVES)
        assert set(arrivals[:5]) == first
        assert set(arrivals[5:9]) == second
        assert set(arrivals[9:]) == third

    def test_on_update_carries_running_summary(self, db, fakes):
        summaries: list[dict] = []
        report = run_scan(
            "example.com",
            _SETTINGS,
            wave_delays=(0.0, 0.0),
            on_update=lambda ct, result, summary: summaries.append(summary),
        )

        assert len(summaries) == len(CheckType)
        assert summaries[-1]["final_score"] == report.final_score

    def test_bimi_pair_shares_one_lookup(self, db, fakes):
        run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))

        assert fakes.bimi_pair_calls == 1
        assert CheckType.BIMI_RECORD not in fakes.calls
        assert CheckType.BIMI_VMC not in fakes.calls

    def test_second_scan_served_from_cache(self, db, fakes):
        run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))
        calls_after_first = len(fakes.calls)

        report = run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))

        assert len(fakes.calls) == calls_after_first
        assert fakes.bimi_pair_calls == 1
        assert len(report.results) == len(CheckType)

    def test_use_cache_false_runs_live(self, db, fakes):
        run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))
        run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0), use_cache=False)

        assert fakes.calls.count(CheckType.MX) == 2

    def test_failing_check_does_not_abort_scan(self, db):
        runners = _FakeRunners({CheckType.COMPLIANCE: ValueError("bad html")})
        with patch.dict(CHECK_RUNNERS, runners.registry()), patch(_BIMI_ALL, side_effect=runners.bimi_all):
            report = run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))

        assert report.results[CheckType.COMPLIANCE].status == "fail"
        assert report.results[CheckType.MX].status == "pass"
        assert report.config_score == 100

    def test_blacklist_multiplier_applied(self, db):
        listed = CheckResult("fail", 70, {"reputation_tier": "multi_major", "major_listings": 2})
        runners = _FakeRunners({CheckType.BLACKLIST: listed, CheckType.SPF: CheckResult("pass", 80),
                                CheckType.DKIM: CheckResult("pass", 80), CheckType.DMARC: CheckResult("warn", 80),
                                CheckType.MX: CheckResult("pass", 80), CheckType.SMTP: CheckResult("pass", 80)})
        with patch.dict(CHECK_RUNNERS, runners.registry()), patch(_BIMI_ALL, side_effect=runners.bimi_all):
            report = run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0))

        assert report.config_score == 80
        assert report.final_score == 20
        assert any(issue["check"] == "blacklist" for issue in report.to_dict()["issues"])

    def test_scan_id_is_kept(self, db, fakes):
        report = run_scan("example.com", _SETTINGS, wave_delays=(0.0, 0.0), scan_id="scan_abc_123456789")
        assert report.scan_id == "scan_abc_123456789"


# ---------------------------------------------------------------------------
# Widget
# ---------------------------------------------------------------------------


def test_widget_scan_equal_weight_average(db):
    runners = _FakeRunners({
        CheckType.SPF: CheckResult("pass", 90),
        CheckType.DKIM: CheckResult("warn", 70),
        CheckType.DMARC: CheckResult("warn", 50),
    })
    with patch.dict(CHECK_RUNNERS, runners.registry()), \
         patch.object(engine, "get_cached") as mock_get, \
         patch.object(engine, "set_cached") as mock_set:
        snapshot = run_widget_scan("example.com", _SETTINGS)

    assert snapshot["domain"] == "example.com"
    assert snapshot["score"] == 70
    assert set(snapshot["checks"]) == {"spf", "dkim", "dmarc"}
    mock_get.assert_not_called()
    mock_set.assert_not_called()
