"""
Scan orchestration engine.

Runs the protocol checks for a domain and aggregates their results:
- Single checks through the cache (run_check_cached)
- Full scans fired in three ordered waves (run_scan)
- A cache-less DNS-only snapshot for embeddable widgets (run_widget_scan)

Wave order is part of the contract.  The blacklist check fires last
because it is the only check that can lower a score the caller has
already seen.  Every arriving result is cached, folded into the aggregate
and published through the optional ``on_update`` callback.

Check runners execute on worker threads and never touch the database;
cache reads and writes happen on the calling thread, which owns the
application context.
"""

from __future__ import annotations

import logging
import random
import string
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from mailhealth.checker.bimi import check_bimi_all, check_bimi_record, check_bimi_vmc
from mailhealth.checker.blacklist import check_blacklist
from mailhealth.checker.cache import get_cached, set_cached
from mailhealth.checker.compliance import check_compliance
from mailhealth.checker.dkim import check_dkim
from mailhealth.checker.dmarc import check_dmarc
from mailhealth.checker.mta_sts import check_mta_sts
from mailhealth.checker.mx import check_mx
from mailhealth.checker.scoring import summarize
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.smtp import check_smtp
from mailhealth.checker.spf import check_spf
from mailhealth.checker.tls_rpt import check_tls_rpt
from mailhealth.checker.types import STATUS_FAIL, CheckResult, CheckType, round_half_up

logger = logging.getLogger(__name__)

Runner = Callable[[str, ScanSettings, "list[str] | None"], CheckResult]
UpdateCallback = Callable[[CheckType, CheckResult, "dict[str, Any]"], None]

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

CHECK_RUNNERS: dict[CheckType, Runner] = {
    CheckType.MX: lambda d, s, sel: check_mx(d, s),
    CheckType.SPF: lambda d, s, sel: check_spf(d, s),
    CheckType.DKIM: lambda d, s, sel: check_dkim(d, s, sel),
    CheckType.DMARC: lambda d, s, sel: check_dmarc(d, s),
    CheckType.SMTP: lambda d, s, sel: check_smtp(d, s),
    CheckType.MTA_STS: lambda d, s, sel: check_mta_sts(d, s),
    CheckType.TLS_RPT: lambda d, s, sel: check_tls_rpt(d, s),
    CheckType.BIMI_RECORD: lambda d, s, sel: check_bimi_record(d, s),
    CheckType.BIMI_VMC: lambda d, s, sel: check_bimi_vmc(d, s),
    CheckType.BLACKLIST: lambda d, s, sel: check_blacklist(d, s),
    CheckType.COMPLIANCE: lambda d, s, sel: check_compliance(d, s),
}

WAVES: tuple[tuple[CheckType, ...], ...] = (
    (CheckType.MX, CheckType.SPF, CheckType.DKIM, CheckType.DMARC, CheckType.SMTP),
    (CheckType.MTA_STS, CheckType.TLS_RPT, CheckType.BIMI_RECORD, CheckType.BIMI_VMC),
    (CheckType.BLACKLIST, CheckType.COMPLIANCE),
)

# Seconds after scan start at which waves 2 and 3 fire.
DEFAULT_WAVE_DELAYS: tuple[float, float] = (0.1, 0.2)

WIDGET_CHECKS: tuple[CheckType, ...] = (CheckType.SPF, CheckType.DKIM, CheckType.DMARC)

_BIMI_PAIR = frozenset({CheckType.BIMI_RECORD, CheckType.BIMI_VMC})
_SCAN_ID_ALPHABET = string.digits + string.ascii_lowercase


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class ScanReport:
    """Aggregate result of a full scan."""

    scan_id: str
    domain: str
    timestamp: str
    results: dict[CheckType, CheckResult] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def config_score(self) -> int | None:
        return self.summary.get("config_score")

    @property
    def final_score(self) -> int | None:
        return self.summary.get("final_score")

    @property
    def reputation_tier(self) -> str:
        return self.summary.get("reputation_tier", "unknown")

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        return {
            "scan_id": self.scan_id,
            "domain": self.domain,
            "timestamp": self.timestamp,
            "status": "completed",
            "config_score": self.config_score,
            "final_score": self.final_score,
            "reputation_tier": self.reputation_tier,
            "reputation_multiplier": self.summary.get("reputation_multiplier", 1.0),
            "checks": {ct.value: r.to_dict() for ct, r in self.results.items()},
            "issues": self.summary.get("issues", []),
            "recommendations": self.summary.get("recommendations", []),
        }


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_SCAN_ID_ALPHABET[rem])
    return "".join(reversed(digits))


def new_scan_id() -> str:
    """Return ``scan_<base36 epoch ms>_<9 random base36 chars>``."""
    suffix = "".join(random.choices(_SCAN_ID_ALPHABET, k=9))
    return f"scan_{_base36(int(time.time() * 1000))}_{suffix}"


# ---------------------------------------------------------------------------
# Single checks
# ---------------------------------------------------------------------------


def _error_result(check_type: CheckType, exc: Exception) -> CheckResult:
    return CheckResult(
        STATUS_FAIL,
        0,
        {"error": str(exc)},
        [f"Unable to complete the {check_type.value} check; try again later"],
        error=f"{check_type.value} check failed: {exc}",
    )


def run_check(
    check_type: CheckType,
    domain: str,
    settings: ScanSettings | None = None,
    selectors: list[str] | None = None,
) -> CheckResult:
    """Run one check with error isolation.

    Any exception escaping the runner is logged and converted into a
    ``fail`` result with ``error`` populated, so callers always get a
    CheckResult.
    """
    check_type = CheckType(check_type)
    settings = settings or ScanSettings()
    try:
        return CHECK_RUNNERS[check_type](domain, settings, selectors)
    except Exception as exc:
        logger.exception("Error in %s check for %s", check_type.value, domain)
        return _error_result(check_type, exc)


def _run_bimi_pair(domain: str, settings: ScanSettings) -> dict[CheckType, CheckResult]:
    try:
        record, vmc = check_bimi_all(domain, settings)
    except Exception as exc:
        logger.exception("Error in combined BIMI check for %s", domain)
        return {ct: _error_result(ct, exc) for ct in (CheckType.BIMI_RECORD, CheckType.BIMI_VMC)}
    return {CheckType.BIMI_RECORD: record, CheckType.BIMI_VMC: vmc}


def run_check_cached(
    check_type: CheckType,
    domain: str,
    settings: ScanSettings | None = None,
    selectors: list[str] | None = None,
    max_age: int | None = None,
) -> tuple[CheckResult, bool]:
    """Run one check through the result cache.

    Caller-supplied DKIM selectors change the result, so such calls skip
    the cache entirely.

    Returns:
        A (result, cached) tuple.
    """
    check_type = CheckType(check_type)
    use_cache = not (check_type == CheckType.DKIM and selectors)

    if use_cache:
        cached = get_cached(check_type, domain, max_age=max_age)
        if cached is not None:
            logger.debug("Cache hit for %s:%s", check_type.value, domain)
            return cached, True

    result = run_check(check_type, domain, settings, selectors)
    if use_cache:
        set_cached(check_type, domain, result)
    return result, False


# ---------------------------------------------------------------------------
# Full scan
# ---------------------------------------------------------------------------


class _ScanRun:
    """Mutable state of one scan while its waves are in flight."""

    def __init__(
        self,
        domain: str,
        settings: ScanSettings,
        selectors: list[str] | None,
        max_age: int | None,
        use_cache: bool,
        on_update: UpdateCallback | None,
    ) -> None:
        self.domain = domain
        self.settings = settings
        self.selectors = selectors
        self.max_age = max_age
        self.use_cache = use_cache
        self.on_update = on_update
        self.results: dict[CheckType, CheckResult] = {}
        self.pending: dict[Future, tuple[CheckType, ...]] = {}

    def _cacheable(self, check_type: CheckType) -> bool:
        return self.use_cache and not (check_type == CheckType.DKIM and self.selectors)

    def arrive(self, check_type: CheckType, result: CheckResult, from_cache: bool) -> None:
        self.results[check_type] = result
        if not from_cache and self._cacheable(check_type):
            set_cached(check_type, self.domain, result)
        if self.on_update is not None:
            self.on_update(check_type, result, summarize(self.domain, self.results))

    def fire_wave(self, executor: ThreadPoolExecutor, wave: Iterable[CheckType]) -> None:
        misses: list[CheckType] = []
        for check_type in wave:
            cached = (
                get_cached(check_type, self.domain, max_age=self.max_age)
                if self._cacheable(check_type)
                else None
            )
            if cached is not None:
                self.arrive(check_type, cached, from_cache=True)
            else:
                misses.append(check_type)

        # Both BIMI verdicts needed: share one record lookup.
        if _BIMI_PAIR.issubset(misses):
            future = executor.submit(_run_bimi_pair, self.domain, self.settings)
            self.pending[future] = (CheckType.BIMI_RECORD, CheckType.BIMI_VMC)
            misses = [ct for ct in misses if ct not in _BIMI_PAIR]

        for check_type in misses:
            future = executor.submit(run_check, check_type, self.domain, self.settings, self.selectors)
            self.pending[future] = (check_type,)

    def drain(self, deadline: float | None) -> None:
        """Process arrivals until *deadline* (monotonic) or until nothing is pending."""
        while self.pending:
            timeout = None
            if deadline is not None:
                timeout = deadline - time.monotonic()
                if timeout <= 0:
                    return
            done, _ = wait(list(self.pending), timeout=timeout, return_when=FIRST_COMPLETED)
            for future in done:
                check_types = self.pending.pop(future)
                outcome = future.result()
                if isinstance(outcome, CheckResult):
                    outcome = {check_types[0]: outcome}
                for check_type in check_types:
                    self.arrive(check_type, outcome[check_type], from_cache=False)


def run_scan(
    domain: str,
    settings: ScanSettings | None = None,
    *,
    selectors: list[str] | None = None,
    max_age: int | None = None,
    use_cache: bool = True,
    wave_delays: tuple[float, float] = DEFAULT_WAVE_DELAYS,
    on_update: UpdateCallback | None = None,
    scan_id: str | None = None,
) -> ScanReport:
    """Run every check against *domain* in three ordered waves.

    Args:
        domain: A validated domain name.
        settings: Network settings handed to every runner.
        selectors: Extra DKIM selectors to probe.
        max_age: Caller-tier cache ceiling in seconds (0 disables the cache).
        use_cache: False forces every check to run live.
        wave_delays: Offsets in seconds from scan start for waves 2 and 3.
        on_update: Called as ``on_update(check_type, result, summary)`` on
            the calling thread each time a result arrives.
        scan_id: Identifier to stamp on the report; generated if omitted.

    Returns:
        The completed ScanReport.
    """
    settings = settings or ScanSettings()
    scan_id = scan_id or new_scan_id()
    run = _ScanRun(domain, settings, selectors, max_age, use_cache, on_update)
    offsets = (0.0,) + tuple(wave_delays)

    started = time.monotonic()
    logger.info("Scan %s started for %s", scan_id, domain)

    with ThreadPoolExecutor(max_workers=settings.max_workers, thread_name_prefix="scan") as executor:
        for wave, offset in zip(WAVES, offsets):
            run.drain(started + offset)
            # drain() may return early once nothing is pending.
            remaining = started + offset - time.monotonic()
            if remaining > 0:
                time.sleep(remaining)
            run.fire_wave(executor, wave)
        run.drain(None)

    elapsed_ms = int((time.monotonic() - started) * 1000)
    summary = summarize(domain, run.results)
    logger.info(
        "Scan %s for %s complete in %dms: config=%s final=%s tier=%s",
        scan_id, domain, elapsed_ms,
        summary["config_score"], summary["final_score"], summary["reputation_tier"],
    )

    ordered = {ct: run.results[ct] for ct in CheckType if ct in run.results}
    return ScanReport(
        scan_id=scan_id,
        domain=domain,
        timestamp=datetime.now(timezone.utc).isoformat(),
        results=ordered,
        summary=summary,
    )


# ---------------------------------------------------------------------------
# Widget snapshot
# ---------------------------------------------------------------------------


def run_widget_scan(domain: str, settings: ScanSettings | None = None) -> dict[str, Any]:
    """DNS-only SPF/DKIM/DMARC snapshot with an equal-weight average score.

    Always live: the cache is never consulted or written.
    """
    settings = settings or ScanSettings()
    with ThreadPoolExecutor(max_workers=len(WIDGET_CHECKS), thread_name_prefix="widget") as executor:
        futures = {ct: executor.submit(run_check, ct, domain, settings) for ct in WIDGET_CHECKS}
        results = {ct: future.result() for ct, future in futures.items()}

    score = round_half_up(sum(r.score for r in results.values()) / len(results))
    return {
        "domain": domain,
        "score": score,
        "checks": {ct.value: r.to_dict() for ct, r in results.items()},
    }
