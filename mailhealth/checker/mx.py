"""
MX record check.

Resolves the domain's MX records and confirms that every exchange resolves
to at least one address.  Exchanges are validated in parallel.  A domain
without MX records falls back to its A/AAAA records (RFC 5321 section 5.1
implicit MX), which is accepted but scored as a warning.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from mailhealth.checker.resolver import parse_mx_records, query_dns, resolve_addresses
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

_MAX_WORKERS = 5


def check_mx(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Check MX records for *domain*.

    Args:
        domain: The domain name to check.
        settings: Optional ScanSettings for resolver configuration.

    Returns:
        A CheckResult whose details carry mx_records (exchange, priority,
        addrs, resolves), count and valid_count.
    """
    dns_result = query_dns(domain, "MX", settings)
    mx_records = parse_mx_records(dns_result["records"]) if dns_result["success"] else []

    if not mx_records:
        return _implicit_mx(domain, settings, dns_result.get("error_message"))

    with ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="mx") as executor:
        addr_lists = list(
            executor.map(lambda mx: resolve_addresses(mx["exchange"], settings), mx_records)
        )

    entries: list[dict[str, Any]] = []
    for mx, addrs in zip(mx_records, addr_lists):
        entries.append(
            {
                "exchange": mx["exchange"],
                "priority": mx["priority"],
                "addrs": addrs,
                "resolves": bool(addrs),
            }
        )

    valid_count = sum(1 for e in entries if e["resolves"])
    details = {
        "mx_records": entries,
        "count": len(entries),
        "valid_count": valid_count,
    }

    recommendations: list[str] = []
    for entry in entries:
        if not entry["resolves"]:
            recommendations.append(
                f"MX host {entry['exchange']} does not resolve to an IP address"
            )

    if valid_count >= 2:
        return CheckResult(STATUS_PASS, 100, details, recommendations)

    if valid_count == 1:
        recommendations.append("Add a second MX record for redundancy")
        return CheckResult(STATUS_WARN, 85, details, recommendations)

    recommendations.append("Ensure your MX hostnames have A or AAAA records")
    return CheckResult(
        STATUS_FAIL, 30, details, recommendations,
        error="None of the MX hosts resolve",
    )


def _implicit_mx(
    domain: str,
    settings: ScanSettings | None,
    mx_error: str | None,
) -> CheckResult:
    """Score the A/AAAA fallback used when *domain* publishes no MX."""
    fallback_addrs = resolve_addresses(domain, settings)

    if not fallback_addrs:
        logger.info("No MX and no A/AAAA records for %s", domain)
        return CheckResult(
            STATUS_FAIL,
            0,
            {"mx_records": [], "count": 0, "valid_count": 0, "fallback": False},
            ["Add MX records pointing to your mail server"],
            error=mx_error or "No MX records found",
        )

    logger.info("No MX for %s; falling back to %d A/AAAA addresses", domain, len(fallback_addrs))
    return CheckResult(
        STATUS_WARN,
        60,
        {
            "mx_records": [],
            "count": 0,
            "valid_count": 0,
            "fallback": True,
            "fallback_addrs": fallback_addrs,
        },
        [
            "No MX records found; mail is delivered to the domain's A/AAAA address. "
            "Publish explicit MX records."
        ],
    )
