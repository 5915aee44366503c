"""
Scan request orchestration: preflight, then a three-wave scan.

Preflight order is fixed: domain syntax, denylist, caller quota.  A
refusal raises a ScanRefused subclass and no report is produced.  A scan
attempt event is recorded whatever the outcome.

Anonymous callers carry two counters: the authoritative quota guard
(free-tier hourly/daily limits, keyed by IP) and a smaller client-visible
daily allowance checked first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from mailhealth.checker.engine import ScanReport, UpdateCallback, new_scan_id, run_scan
from mailhealth.checker.settings import ScanSettings
from mailhealth.errors import QuotaExceeded, ScanRefused
from mailhealth.utils.analytics import complete_scan_event, record_scan_event
from mailhealth.utils.domain import normalize_domain, validate_domain
from mailhealth.utils.identity import CallerContext
from mailhealth.utils.rate_limit import QuotaDecision, check_quota

logger = logging.getLogger(__name__)

ANON_COUNTER_PREFIX = "anon-daily:"


@dataclass(frozen=True)
class Preflight:
    """An admitted scan request."""

    scan_id: str
    domain: str
    caller: CallerContext


def _anonymous_allowance(caller: CallerContext, daily: int) -> QuotaDecision:
    # hourly ceiling above the daily one: only the day window can deny
    return check_quota(f"{ANON_COUNTER_PREFIX}{caller.ip}", hourly_limit=daily + 1, daily_limit=daily)


def _consume_quota(caller: CallerContext, config: Mapping[str, Any]) -> None:
    if caller.is_anonymous:
        decision = _anonymous_allowance(caller, int(config.get("ANON_DAILY_SCANS", 3)))
        if not decision.allowed:
            raise QuotaExceeded(
                "Daily free scan limit reached. Sign in for more scans.",
                decision.retry_after or 1,
            )

    limits = caller.limits
    decision = check_quota(caller.identity_key, limits.hourly, limits.daily)
    if not decision.allowed:
        raise QuotaExceeded("Scan limit reached. Try again later.", decision.retry_after or 1)


def preflight(
    raw_domain: str | None,
    caller: CallerContext,
    config: Mapping[str, Any],
    enforce_quota: bool = True,
) -> Preflight:
    """Admit or refuse a scan request.

    Args:
        raw_domain: Domain as supplied by the caller.
        caller: Resolved caller identity and tier.
        config: Flask config mapping (denylist, anonymous allowance).
        enforce_quota: False skips the quota guard (CLI and widget use).

    Returns:
        A Preflight carrying the normalized domain and a fresh scan id.

    Raises:
        ValidationError, DenylistError, QuotaExceeded.
    """
    scan_id = new_scan_id()
    try:
        domain = validate_domain(raw_domain, config.get("BLOCKED_DOMAINS") or ())
        if enforce_quota:
            _consume_quota(caller, config)
    except ScanRefused as exc:
        logger.info("Scan refused for %r (%s): %s", raw_domain, caller.identity_key, exc.message)
        record_scan_event(
            scan_id,
            normalize_domain(raw_domain)[:255],
            caller,
            limit_hit=isinstance(exc, QuotaExceeded),
        )
        raise

    record_scan_event(scan_id, domain, caller)
    return Preflight(scan_id=scan_id, domain=domain, caller=caller)


def scan(
    admitted: Preflight,
    config: Mapping[str, Any],
    selectors: list[str] | None = None,
    on_update: UpdateCallback | None = None,
) -> ScanReport:
    """Run the full scan for an admitted request and complete its event."""
    report = run_scan(
        admitted.domain,
        ScanSettings.from_config(config),
        selectors=selectors,
        max_age=admitted.caller.cache_max_age,
        wave_delays=(
            float(config.get("WAVE2_DELAY", 0.1)),
            float(config.get("WAVE3_DELAY", 0.2)),
        ),
        on_update=on_update,
        scan_id=admitted.scan_id,
    )
    complete_scan_event(admitted.scan_id, report)
    return report
