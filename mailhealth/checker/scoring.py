"""
Scoring aggregator and issue derivation.

configScore is the weighted mean of the scored checks that have actually
completed; missing checks are left out of both sums rather than counted
as zero.  finalScore applies the blacklist reputation multiplier, which
is 1.0 whenever the blacklist result is absent or errored.

Issues come from a declarative rule table keyed by (check, status).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from mailhealth.checker.types import (
    REPUTATION_MULTIPLIERS,
    SCORING_WEIGHTS,
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    CheckResult,
    CheckType,
    ReputationTier,
    round_half_up,
)

logger = logging.getLogger(__name__)

Results = Mapping[CheckType, CheckResult]


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def config_score(results: Results) -> int | None:
    """Weighted mean over the scored checks present in *results*.

    Returns:
        The rounded score, or None when no scored check has completed yet.
    """
    total = 0
    weight_sum = 0
    for check_type, weight in SCORING_WEIGHTS.items():
        result = results.get(check_type)
        if result is None:
            continue
        total += result.score * weight
        weight_sum += weight

    if weight_sum == 0:
        return None
    return round_half_up(total / weight_sum)


def reputation_tier(results: Results) -> ReputationTier:
    """Tier reported by the blacklist check; unknown when absent or errored."""
    blacklist = results.get(CheckType.BLACKLIST)
    if blacklist is None or blacklist.details.get("check_error"):
        return ReputationTier.UNKNOWN
    try:
        return ReputationTier(blacklist.details.get("reputation_tier", "unknown"))
    except ValueError:
        logger.warning("Unrecognised reputation tier %r", blacklist.details.get("reputation_tier"))
        return ReputationTier.UNKNOWN


def reputation_multiplier(results: Results) -> float:
    """Multiplier in (0, 1] applied to the configuration score."""
    return REPUTATION_MULTIPLIERS[reputation_tier(results)]


def final_score(results: Results) -> int | None:
    """configScore x multiplier, rounded half up; None before any scored check."""
    score = config_score(results)
    if score is None:
        return None
    return round_half_up(score * reputation_multiplier(results))


# ---------------------------------------------------------------------------
# Issue rules
# ---------------------------------------------------------------------------

def _spf_warn_description(domain: str, result: CheckResult, results: Results) -> str:
    lookup_count = result.details.get("lookup_count", 0)
    if isinstance(lookup_count, int) and lookup_count > 7:
        return f"High DNS lookup count ({lookup_count})"
    return "SPF policy could be stricter"


def _dmarc_warn_description(domain: str, result: CheckResult, results: Results) -> str:
    if result.details.get("policy") == "none":
        return "DMARC policy is set to none (monitoring only)"
    return "DMARC configuration could be improved"


def _bimi_vmc_applies(result: CheckResult, results: Results) -> bool:
    record = results.get(CheckType.BIMI_RECORD)
    return record is not None and record.status == STATUS_PASS


def _blacklist_warn_applies(result: CheckResult, results: Results) -> bool:
    return not result.details.get("check_error")


# description/remediation are strings or callables taking (domain, result, results).
ISSUE_RULES: dict[tuple[CheckType, str], dict[str, Any]] = {
    (CheckType.MX, STATUS_FAIL): {
        "severity": "error",
        "title": "No valid MX records",
        "description": lambda d, r, rs: r.error or "Domain has no MX records or they do not resolve",
        "remediation": "Add MX records to your DNS pointing to your mail server",
    },
    (CheckType.MX, STATUS_WARN): {
        "severity": "warning",
        "title": "MX configuration needs improvement",
        "description": "MX records exist but configuration could be improved",
        "remediation": "Add at least 2 MX records for redundancy",
    },
    (CheckType.SPF, STATUS_FAIL): {
        "severity": "error",
        "title": "SPF record missing or invalid",
        "description": lambda d, r, rs: (
            "Multiple SPF records found for this domain"
            if r.details.get("multiple_records")
            else "No valid SPF record found for this domain"
        ),
        "remediation": "Publish exactly one SPF record: v=spf1 include:_spf.example.com ~all",
    },
    (CheckType.SPF, STATUS_WARN): {
        "severity": "warning",
        "title": "SPF configuration needs attention",
        "description": _spf_warn_description,
        "remediation": "Consider using -all for strict rejection and optimize DNS lookups",
    },
    (CheckType.DKIM, STATUS_FAIL): {
        "severity": "error",
        "title": "No DKIM keys found",
        "description": "No DKIM public keys discovered for common selectors",
        "remediation": "Generate and publish DKIM keys for your domain",
    },
    (CheckType.DKIM, STATUS_WARN): {
        "severity": "warning",
        "title": "DKIM key strength issue",
        "description": "DKIM keys found but may be using weak encryption",
        "remediation": "Upgrade to 2048-bit RSA keys for better security",
    },
    (CheckType.DMARC, STATUS_FAIL): {
        "severity": "warning",
        "title": "No DMARC policy",
        "description": lambda d, r, rs: f"DMARC record not found at _dmarc.{d}",
        "remediation": lambda d, r, rs: f"Add a DMARC policy: v=DMARC1; p=none; rua=mailto:dmarc@{d}",
    },
    (CheckType.DMARC, STATUS_WARN): {
        "severity": "warning",
        "title": "DMARC policy is permissive",
        "description": _dmarc_warn_description,
        "remediation": "Consider upgrading policy to p=quarantine or p=reject",
    },
    (CheckType.SMTP, STATUS_FAIL): {
        "severity": "error",
        "title": "No mail servers listed",
        "description": "No MX servers could be listed for this domain",
        "remediation": "Publish MX records pointing to reachable mail servers",
    },
    (CheckType.SMTP, STATUS_WARN): {
        "severity": "warning",
        "title": "SMTP configuration needs improvement",
        "description": "Mail servers are listed but lack redundancy or do not all resolve",
        "remediation": "Add a backup MX server and make sure every MX host resolves",
    },
    (CheckType.MTA_STS, STATUS_FAIL): {
        "severity": "warning",
        "title": "MTA-STS not configured",
        "description": "No MTA-STS record found - inbound email TLS is not enforced",
        "remediation": "Add MTA-STS TXT record and policy file to enforce TLS for incoming mail",
    },
    (CheckType.MTA_STS, STATUS_WARN): {
        "severity": "info",
        "title": "MTA-STS partially configured",
        "description": "MTA-STS record found but policy may need attention",
        "remediation": "Review MTA-STS policy mode and ensure it is set to enforce",
    },
    (CheckType.TLS_RPT, STATUS_FAIL): {
        "severity": "info",
        "title": "TLS-RPT not configured",
        "description": "No TLS-RPT record found - you won't receive TLS failure reports",
        "remediation": "Add TLS-RPT TXT record at _smtp._tls.yourdomain",
    },
    (CheckType.BIMI_RECORD, STATUS_FAIL): {
        "severity": "info",
        "title": "BIMI not configured",
        "description": "BIMI record is invalid - brand logos won't appear in email clients",
        "remediation": "Add BIMI TXT record at default._bimi.yourdomain with an SVG logo URL",
    },
    (CheckType.BIMI_VMC, STATUS_WARN): {
        "severity": "info",
        "title": "BIMI VMC not configured",
        "description": "BIMI record present but no VMC certificate - logo display may be limited",
        "remediation": "Consider adding a Verified Mark Certificate (VMC) for broader logo support",
        "applies": _bimi_vmc_applies,
    },
    (CheckType.BLACKLIST, STATUS_FAIL): {
        "severity": "error",
        "title": "Mail server listed on major blacklists",
        "description": lambda d, r, rs: (
            f"{r.details.get('major_listings', 0)} major blacklist listing(s) found "
            "for your mail server IPs"
        ),
        "remediation": "Fix the cause of the listing and request delisting from each blacklist",
    },
    (CheckType.BLACKLIST, STATUS_WARN): {
        "severity": "warning",
        "title": "Mail server listed on minor blacklists",
        "description": lambda d, r, rs: (
            f"{r.details.get('minor_listings', 0)} minor blacklist listing(s) found"
        ),
        "remediation": "Monitor your IP reputation and request delisting if deliverability suffers",
        "applies": _blacklist_warn_applies,
    },
    (CheckType.COMPLIANCE, STATUS_FAIL): {
        "severity": "warning",
        "title": "Privacy and terms pages not found",
        "description": "Neither a privacy policy nor a terms page was reachable on the website",
        "remediation": "Publish /privacy and /terms pages that return HTTP 200",
    },
    (CheckType.COMPLIANCE, STATUS_WARN): {
        "severity": "info",
        "title": "Website compliance could be improved",
        "description": "Some compliance pages or consent signals are missing",
        "remediation": "Add the missing privacy, terms or consent elements",
    },
}


def _render(value: Any, domain: str, result: CheckResult, results: Results) -> str:
    return value(domain, result, results) if callable(value) else value


def derive_issues(domain: str, results: Results) -> list[dict[str, str]]:
    """Build the issue list for *results* in check-declaration order."""
    issues: list[dict[str, str]] = []
    for check_type in CheckType:
        result = results.get(check_type)
        if result is None:
            continue
        rule = ISSUE_RULES.get((check_type, result.status))
        if rule is None:
            continue
        applies = rule.get("applies")
        if applies is not None and not applies(result, results):
            continue
        issues.append(
            {
                "severity": rule["severity"],
                "check": check_type.value,
                "title": rule["title"],
                "description": _render(rule["description"], domain, result, results),
                "remediation": _render(rule["remediation"], domain, result, results),
            }
        )
    return issues


def collect_recommendations(results: Results) -> list[str]:
    """Flatten every check's recommendations in check-declaration order."""
    recommendations: list[str] = []
    for check_type in CheckType:
        result = results.get(check_type)
        if result is not None:
            recommendations.extend(result.recommendations)
    return recommendations


def summarize(domain: str, results: Results) -> dict[str, Any]:
    """Aggregate view of *results*: scores, tier, issues and recommendations."""
    tier = reputation_tier(results)
    return {
        "config_score": config_score(results),
        "final_score": final_score(results),
        "reputation_tier": tier.value,
        "reputation_multiplier": REPUTATION_MULTIPLIERS[tier],
        "issues": derive_issues(domain, results),
        "recommendations": collect_recommendations(results),
    }
