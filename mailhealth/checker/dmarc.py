"""
DMARC record validation.

Queries ``_dmarc.{domain}``, requires ``v=DMARC1`` and scores the policy:
- p (none/quarantine/reject, default none) sets the base score
- missing rua (aggregate reports) and relaxed alignment are penalised
- pct below 100 under an enforcing policy takes the unenforced share of
  the policy rank off the (capped) score
"""

from __future__ import annotations

import logging
from typing import Any

from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    CheckResult,
    round_half_up,
)

logger = logging.getLogger(__name__)

POLICY_RANK: dict[str, int] = {"none": 0, "quarantine": 50, "reject": 100}

_BASE_SCORE = 50
_NO_RUA_PENALTY = 15
_RELAXED_ALIGNMENT_PENALTY = 10


def parse_dmarc_tags(record: str) -> dict[str, str]:
    """Split a DMARC record into a tag dict.

    Each ``;``-separated tag is split on its FIRST ``=`` only, so values
    that themselves contain ``=`` (mailto URIs with query strings) survive.
    """
    parsed: dict[str, str] = {}
    for tag in record.split(";"):
        key, sep, value = tag.partition("=")
        key = key.strip()
        value = value.strip()
        if sep and key and value:
            parsed[key] = value
    return parsed


def _parse_pct(raw: str | None) -> int:
    if raw is None:
        return 100
    try:
        return max(0, min(100, int(raw)))
    except ValueError:
        logger.debug("Ignoring invalid DMARC pct=%r", raw)
        return 100


def check_dmarc(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Validate the DMARC record for *domain*.

    Args:
        domain: The domain name to check.
        settings: Optional ScanSettings for resolver configuration.

    Returns:
        A CheckResult whose details carry found, dmarc_record, parsed_tags,
        policy, has_rua, has_ruf, dkim_alignment, spf_alignment and pct.
    """
    dns_result = query_dns(f"_dmarc.{domain}", "TXT", settings)
    records = [r.strip() for r in dns_result["records"] if "v=DMARC1" in r]

    if not records:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"found": False, "dmarc_record": None},
            [
                "Add a DMARC policy record at _dmarc.yourdomain",
                "Start with v=DMARC1; p=none; rua=mailto:dmarc@yourdomain",
                "Monitor reports, then move to p=quarantine and p=reject",
            ],
            error=None if dns_result["success"] else dns_result["error_message"],
        )

    dmarc_record = records[0]
    parsed = parse_dmarc_tags(dmarc_record)

    policy = parsed.get("p", "none").lower()
    if policy not in POLICY_RANK:
        policy = "none"
    has_rua = bool(parsed.get("rua"))
    has_ruf = bool(parsed.get("ruf"))
    adkim = parsed.get("adkim", "r").lower()
    aspf = parsed.get("aspf", "r").lower()
    strict = adkim == "s" and aspf == "s"
    pct = _parse_pct(parsed.get("pct"))

    rank = POLICY_RANK[policy]
    score = _BASE_SCORE + rank
    if not has_rua:
        score -= _NO_RUA_PENALTY
    if not strict:
        score -= _RELAXED_ALIGNMENT_PENALTY
    score = min(100, score)
    # partial enforcement is taken off the capped score so it always shows
    if policy != "none" and pct < 100:
        score -= round_half_up(rank * (100 - pct) / 100)

    status = STATUS_PASS if policy == "reject" else STATUS_WARN

    recommendations: list[str] = []
    if len(records) > 1:
        recommendations.append(
            f"Multiple DMARC records found ({len(records)}); publish exactly one"
        )
    if policy == "none":
        recommendations.append(
            "Policy is p=none (monitoring only). After reviewing reports, upgrade to p=quarantine"
        )
    if policy != "none" and pct < 100:
        recommendations.append(
            f"Policy applies to only {pct}% of failing mail; raise pct to 100"
        )
    if not has_rua:
        recommendations.append(
            "Add a rua tag to receive aggregate reports: rua=mailto:dmarc@yourdomain"
        )
    if not strict:
        recommendations.append(
            "Consider strict alignment for better SPF/DKIM enforcement: adkim=s; aspf=s"
        )

    details: dict[str, Any] = {
        "found": True,
        "dmarc_record": dmarc_record,
        "parsed_tags": parsed,
        "policy": policy,
        "has_rua": has_rua,
        "has_ruf": has_ruf,
        "dkim_alignment": adkim,
        "spf_alignment": aspf,
        "pct": pct,
    }
    return CheckResult(status, score, details, recommendations)
