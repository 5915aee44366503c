"""
SPF record validation.

Validates the SPF (Sender Policy Framework) record of a domain:
- Presence and uniqueness of the v=spf1 record (RFC 7208 section 3.2)
- Recursive DNS lookup count across include/redirect chains (max 10)
- Policy qualifier of the final "all" term (-all, ~all, ?all, +all)

The recursive counter treats every lookup-consuming mechanism (include,
a, mx, ptr, exists, redirect) as one lookup and follows include and
redirect targets to a bounded depth with a visited set, so include cycles
always terminate.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

# Deepest include/redirect level that is still followed.
MAX_RECURSION_DEPTH = 5

# RFC 7208 section 4.6.4 ceiling
MAX_DNS_LOOKUPS = 10
_HIGH_LOOKUP_THRESHOLD = 7

_BASE_SCORE = 80

# Mechanisms/modifiers that consume a DNS lookup, with optional qualifier.
_LOOKUP_RE = re.compile(
    r"^[+\-~?]?(include:|a(?=$|[:/])|mx(?=$|[:/])|ptr(?=$|:)|exists:|redirect=)",
    re.IGNORECASE,
)
_TARGET_RE = re.compile(r"(?:include:|redirect=)(\S+)", re.IGNORECASE)

# DNS failures that simply mean "no TXT data here"
_NOT_FOUND_ERRORS = {"NXDOMAIN", "NO_ANSWER"}


# ---------------------------------------------------------------------------
# Record parsing
# ---------------------------------------------------------------------------


def _spf_records(txt_records: list[str]) -> list[str]:
    """Return the TXT strings that are SPF records."""
    return [r.strip() for r in txt_records if r.strip().lower().startswith("v=spf1")]


def lookup_mechanisms(spf_record: str) -> list[str]:
    """Return the terms of *spf_record* that require a DNS lookup.

    ip4:/ip6: literals and the version tag never count.
    """
    return [token for token in spf_record.split() if _LOOKUP_RE.match(token)]


def lookup_targets(mechanisms: list[str]) -> list[str]:
    """Extract the include:/redirect= target domains from *mechanisms*."""
    targets: list[str] = []
    for mechanism in mechanisms:
        match = _TARGET_RE.search(mechanism)
        if match:
            targets.append(match.group(1).rstrip(".").lower())
    return targets


# ---------------------------------------------------------------------------
# Recursive lookup counter
# ---------------------------------------------------------------------------


def count_recursive_lookups(
    domain: str,
    settings: ScanSettings | None = None,
    visited: set[str] | None = None,
    depth: int = 0,
    record: str | None = None,
) -> tuple[int, list[dict[str, Any]]]:
    """Count DNS lookups across the SPF chain rooted at *domain*.

    Args:
        domain: Domain whose SPF record starts the chain.
        settings: Optional ScanSettings for resolver configuration.
        visited: Domains already expanded; shared across the whole walk.
        depth: Current include depth (0 for the scanned domain).
        record: Already-fetched SPF record for *domain*, saving one query.

    Returns:
        A (total_lookups, chain) tuple where chain lists one entry per
        expanded domain: {domain, lookups, mechanisms}.
    """
    if visited is None:
        visited = set()

    domain = domain.rstrip(".").lower()
    if domain in visited or depth > MAX_RECURSION_DEPTH:
        return 0, []
    visited.add(domain)

    if record is None:
        dns_result = query_dns(domain, "TXT", settings)
        if not dns_result["success"]:
            # The failed lookup still costs one query at the receiver.
            logger.debug("SPF include %s did not resolve: %s", domain, dns_result["error_message"])
            return 1, []
        records = _spf_records(dns_result["records"])
        if not records:
            return 0, []
        record = records[0]

    mechanisms = lookup_mechanisms(record)
    total = len(mechanisms)
    chain: list[dict[str, Any]] = [
        {"domain": domain, "lookups": len(mechanisms), "mechanisms": mechanisms}
    ]

    for target in lookup_targets(mechanisms):
        sub_total, sub_chain = count_recursive_lookups(target, settings, visited, depth + 1)
        total += sub_total
        chain.extend(sub_chain)

    return total, chain


# ---------------------------------------------------------------------------
# Check entry point
# ---------------------------------------------------------------------------


def check_spf(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Validate the SPF record for *domain*.

    Args:
        domain: The domain name to check.
        settings: Optional ScanSettings for resolver configuration.

    Returns:
        A CheckResult whose details carry found, spf_record, lookup_count,
        direct_lookups, includes, policy_qualifier, all_mechanisms and
        lookup_chain.
    """
    dns_result = query_dns(domain, "TXT", settings)

    if not dns_result["success"] and dns_result["error_type"] not in _NOT_FOUND_ERRORS:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"found": False, "spf_record": None},
            ["Check DNS nameserver configuration", "Verify domain is resolvable"],
            error=dns_result["error_message"],
        )

    spf_records = _spf_records(dns_result["records"])

    if not spf_records:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"found": False, "spf_record": None},
            [
                "Add an SPF record: v=spf1 include:_spf.example.com ~all",
                "Include authorized mail server IP ranges or service references",
            ],
        )

    if len(spf_records) > 1:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"found": True, "multiple_records": True, "spf_records": spf_records},
            [
                f"Multiple SPF records found ({len(spf_records)}). RFC 7208 requires exactly "
                "one SPF record per domain; receivers return permerror. "
                "Remove all but one record."
            ],
        )

    spf_record = spf_records[0]
    lookup_count, chain = count_recursive_lookups(domain, settings, record=spf_record)

    tokens = spf_record.split()
    mechanisms = lookup_mechanisms(spf_record)
    final_term = tokens[-1]
    if final_term[0] in "+-~?":
        qualifier = final_term[0]
    else:
        # a bare "all" is an implicit pass; no "all" at all is neutral
        qualifier = "+" if final_term.lower() == "all" else "?"

    score = _BASE_SCORE
    status = STATUS_PASS
    recommendations: list[str] = []

    if lookup_count > MAX_DNS_LOOKUPS:
        score -= 30
        status = STATUS_FAIL
        recommendations.append(
            f"Too many DNS lookups ({lookup_count}, max {MAX_DNS_LOOKUPS} per RFC 7208). "
            "Consider SPF flattening."
        )
    elif lookup_count > _HIGH_LOOKUP_THRESHOLD:
        score -= 15
        status = STATUS_WARN
        recommendations.append(
            f"High DNS lookup count ({lookup_count}/{MAX_DNS_LOOKUPS}). Consider optimizing SPF."
        )

    if qualifier == "-":
        score += 10
    elif qualifier != "~":
        score -= 10
        if status != STATUS_FAIL:
            status = STATUS_WARN
        recommendations.append(
            f"Policy qualifier is {qualifier}all "
            "(consider -all for strict reject or ~all for soft fail)"
        )

    details = {
        "found": True,
        "spf_record": spf_record,
        "lookup_count": lookup_count,
        "direct_lookups": len(mechanisms),
        "includes": lookup_targets(mechanisms),
        "policy_qualifier": final_term,
        "all_mechanisms": tokens,
        "lookup_chain": chain,
    }
    return CheckResult(status, score, details, recommendations)
