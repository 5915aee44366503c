"""
Mail server blacklist (RBL) reputation check.

Resolves the IPv4 address of the two highest-priority MX hosts (or the
domain's own A record when it publishes no MX) and queries an external
RBL aggregator for each IP in parallel.  Every listing is classified as
major (a well-known list that most receivers honour) or minor, which
yields both a score and the reputation tier used by the final-score
multiplier.

When the aggregator cannot be reached the tier is ``unknown``: the verdict
is a warning and the final score is never penalised.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from mailhealth.checker.http import fetch
from mailhealth.checker.resolver import parse_mx_records, query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    CheckResult,
    ReputationTier,
)

logger = logging.getLogger(__name__)

# Substrings of list names/hosts treated as major blacklists.
MAJOR_BLACKLISTS: tuple[str, ...] = ("spamhaus", "barracuda", "spamcop", "sorbs", "nixspam")

_MAX_MX_HOSTS = 2
_MAJOR_PENALTY, _MAJOR_CAP = 15, 60
_MINOR_PENALTY, _MINOR_CAP = 5, 30


class AggregatorUnavailable(Exception):
    """Raised when the RBL aggregator cannot be queried for an IP."""


# ---------------------------------------------------------------------------
# Aggregator response handling
# ---------------------------------------------------------------------------


def parse_rbl_response(text: str) -> list[dict[str, Any]]:
    """Parse ``name;host;website;status`` lines into blacklist entries.

    Lines with fewer than four fields are ignored.  A website of
    ``nowebsite`` becomes an empty string.
    """
    entries: list[dict[str, Any]] = []
    for line in text.strip().splitlines():
        parts = line.split(";")
        if len(parts) < 4:
            continue
        name, host, website, status = (p.strip() for p in parts[:4])
        entries.append(
            {
                "name": name,
                "host": host,
                "website": "" if website == "nowebsite" else website,
                "listed": status == "listed",
            }
        )
    return entries


def is_major_blacklist(entry: dict[str, Any]) -> bool:
    """True when the entry's name or host contains a major-list substring."""
    name = entry["name"].lower()
    host = entry["host"].lower()
    return any(major in name or major in host for major in MAJOR_BLACKLISTS)


def _query_aggregator(ip: str, settings: ScanSettings) -> list[dict[str, Any]]:
    try:
        response = fetch(settings.rbl_api_url, settings.http_timeout, params={"ipaddress": ip})
    except requests.RequestException as exc:
        raise AggregatorUnavailable(f"RBL aggregator request failed for {ip}: {exc}") from exc

    if response.status_code != 200:
        raise AggregatorUnavailable(f"RBL aggregator returned status {response.status_code}")
    return parse_rbl_response(response.text)


def _check_ip(ip: str, hostname: str, settings: ScanSettings) -> dict[str, Any]:
    """Query one IP; the "error" key is set instead of raising."""
    try:
        blacklists = _query_aggregator(ip, settings)
    except AggregatorUnavailable as exc:
        logger.warning("%s", exc)
        return {"ip": ip, "hostname": hostname, "blacklists": [], "error": str(exc)}
    return {"ip": ip, "hostname": hostname, "blacklists": blacklists, "error": None}


# ---------------------------------------------------------------------------
# Mail server discovery
# ---------------------------------------------------------------------------


def get_mail_server_ips(domain: str, settings: ScanSettings | None = None) -> list[dict[str, str]]:
    """Return [{ip, hostname}] for the top MX hosts, first IPv4 each.

    Falls back to the domain's own A record when it has no MX records.
    """
    ips: list[dict[str, str]] = []

    mx_result = query_dns(domain, "MX", settings)
    mx_records = parse_mx_records(mx_result["records"]) if mx_result["success"] else []

    if mx_records:
        for mx in mx_records[:_MAX_MX_HOSTS]:
            a_result = query_dns(mx["exchange"], "A", settings)
            if a_result["success"] and a_result["records"]:
                ips.append({"ip": a_result["records"][0], "hostname": mx["exchange"]})
        return ips

    a_result = query_dns(domain, "A", settings)
    if a_result["success"] and a_result["records"]:
        ips.append({"ip": a_result["records"][0], "hostname": domain})
    return ips


def classify_tier(major_count: int, minor_count: int) -> tuple[ReputationTier, str]:
    """Map listing counts to a (tier, status) pair."""
    if major_count >= 2:
        return ReputationTier.MULTI_MAJOR, STATUS_FAIL
    if major_count == 1:
        return ReputationTier.MAJOR, STATUS_FAIL
    if minor_count > 0:
        return ReputationTier.MINOR_ONLY, STATUS_WARN
    return ReputationTier.CLEAN, STATUS_PASS


def _unknown_result(error: str, ips_checked: int) -> CheckResult:
    return CheckResult(
        STATUS_WARN,
        50,
        {
            "check_error": True,
            "reputation_tier": ReputationTier.UNKNOWN.value,
            "ips_checked": ips_checked,
            "note": "Blacklist check unavailable",
        },
        [
            "Blacklist check could not be completed; no score penalty applied",
            "Try again later",
        ],
        error=error,
    )


# ---------------------------------------------------------------------------
# Check entry point
# ---------------------------------------------------------------------------


def check_blacklist(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Check the domain's mail server IPs against the RBL aggregator.

    Returns:
        A CheckResult whose details carry reputation_tier, ips_checked,
        blacklists_checked, total_listings, major_listings, minor_listings,
        ip_results and all_clear.
    """
    settings = settings or ScanSettings()
    servers = get_mail_server_ips(domain, settings)

    if not servers:
        logger.info("No mail server IPs to check for %s", domain)
        return _unknown_result("Could not resolve any mail server IPs for this domain", 0)

    # One aggregator round-trip per IP, all in flight at once.
    with ThreadPoolExecutor(max_workers=len(servers), thread_name_prefix="rbl") as executor:
        ip_results = list(
            executor.map(lambda s: _check_ip(s["ip"], s["hostname"], settings), servers)
        )

    answered = [r for r in ip_results if r["error"] is None]
    if not answered:
        return _unknown_result(ip_results[0]["error"], len(servers))

    major: list[tuple[str, dict[str, Any]]] = []
    minor: list[tuple[str, dict[str, Any]]] = []
    for result in answered:
        for entry in result["blacklists"]:
            if not entry["listed"]:
                continue
            if is_major_blacklist(entry):
                major.append((result["ip"], entry))
            else:
                minor.append((result["ip"], entry))

    score = 100
    score -= min(len(major) * _MAJOR_PENALTY, _MAJOR_CAP)
    score -= min(len(minor) * _MINOR_PENALTY, _MINOR_CAP)
    tier, status = classify_tier(len(major), len(minor))
    total_listings = len(major) + len(minor)

    recommendations: list[str] = []
    if major:
        recommendations.append(
            f"Found {len(major)} major blacklist listing(s). "
            "This will severely impact email deliverability."
        )
        for ip, entry in major[:3]:
            if entry["website"]:
                recommendations.append(
                    f"{entry['name']} listing for {ip}: visit {entry['website']} to request removal"
                )
            else:
                recommendations.append(
                    f"{entry['name']} listing for {ip}: contact the list operator to request removal"
                )
    elif minor:
        recommendations.append(
            f"Found {len(minor)} minor blacklist listing(s). "
            "Monitor and request delisting if deliverability suffers."
        )
    if total_listings:
        recommendations.append("Review your mail server configuration and sending practices")

    details: dict[str, Any] = {
        "reputation_tier": tier.value,
        "ips_checked": len(servers),
        "blacklists_checked": sum(len(r["blacklists"]) for r in answered),
        "total_listings": total_listings,
        "major_listings": len(major),
        "minor_listings": len(minor),
        "ip_results": [
            {
                "ip": r["ip"],
                "hostname": r["hostname"],
                "listed_count": sum(1 for b in r["blacklists"] if b["listed"]),
                "total_checked": len(r["blacklists"]),
                "listings": [
                    {
                        "name": b["name"],
                        "host": b["host"],
                        "website": b["website"],
                        "major": is_major_blacklist(b),
                    }
                    for b in r["blacklists"]
                    if b["listed"]
                ],
                "error": r["error"],
            }
            for r in ip_results
        ],
        "all_clear": total_listings == 0,
    }
    return CheckResult(status, score, details, recommendations)
