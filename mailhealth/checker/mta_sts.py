"""
MTA-STS check (RFC 8461).

MTA-STS makes sending servers require TLS when delivering to the domain.
The check needs both halves of the mechanism:
- a ``v=STSv1`` TXT record at ``_mta-sts.{domain}``
- a policy file at ``https://mta-sts.{domain}/.well-known/mta-sts.txt``
"""

from __future__ import annotations

import logging
import re
from typing import Any

import requests

from mailhealth.checker.http import fetch
from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

_ID_RE = re.compile(r"id=([^;\s]+)")

# One week, the smallest max_age considered reasonable.
_MIN_MAX_AGE = 604800

_MODE_SCORES: dict[str, tuple[int, str]] = {
    "enforce": (100, STATUS_PASS),
    "testing": (80, STATUS_WARN),
    "none": (50, STATUS_WARN),
}
# Unrecognised mode values
_DEFAULT_MODE_SCORE = (70, STATUS_PASS)


def parse_policy(content: str) -> dict[str, Any] | None:
    """Parse a ``key: value`` MTA-STS policy file.

    Returns:
        A dict with version, mode, mx (list) and max_age, or None when any
        of version, mode or max_age is missing or max_age is not an integer.
    """
    policy: dict[str, Any] = {"mx": []}

    for line in content.strip().splitlines():
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()

        if key == "version":
            policy["version"] = value
        elif key == "mode":
            policy["mode"] = value.lower()
        elif key == "mx":
            policy["mx"].append(value)
        elif key == "max_age":
            try:
                policy["max_age"] = int(value)
            except ValueError:
                return None

    if policy.get("version") and policy.get("mode") and "max_age" in policy:
        return policy
    return None


def _fetch_policy(domain: str, settings: ScanSettings) -> tuple[dict[str, Any] | None, str | None]:
    """Fetch and parse the policy file, returning (policy, error)."""
    url = f"https://mta-sts.{domain}/.well-known/mta-sts.txt"
    try:
        resp = fetch(url, settings.mta_sts_timeout)
    except requests.Timeout:
        return None, "Request timed out"
    except requests.RequestException as exc:
        logger.info("MTA-STS policy fetch failed for %s: %s", domain, exc)
        return None, str(exc)

    if resp.status_code != 200:
        return None, f"Policy file returned {resp.status_code}"

    policy = parse_policy(resp.text)
    if policy is None:
        return None, "Could not parse policy file"
    return policy, None


def check_mta_sts(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Check MTA-STS configuration for *domain*.

    Returns:
        A CheckResult whose details carry has_record, txt_record, record_id
        and policy {version, mode, mx_patterns, max_age, max_age_days}.
    """
    settings = settings or ScanSettings()

    dns_result = query_dns(f"_mta-sts.{domain}", "TXT", settings)
    joined = "".join(dns_result["records"]).strip()
    txt_record = joined if joined.startswith("v=STSv1") else None

    if txt_record is None:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"has_record": False, "txt_record": None, "policy": None},
            [
                "Add an MTA-STS TXT record: v=STSv1; id=<unique_id>",
                "Publish a policy file at https://mta-sts.yourdomain/.well-known/mta-sts.txt",
            ],
        )

    id_match = _ID_RE.search(txt_record)
    record_id = id_match.group(1) if id_match else None

    policy, policy_error = _fetch_policy(domain, settings)
    if policy is None:
        return CheckResult(
            STATUS_WARN,
            40,
            {
                "has_record": True,
                "txt_record": txt_record,
                "record_id": record_id,
                "policy": None,
                "policy_error": policy_error,
            },
            [
                f"MTA-STS record found but policy file error: {policy_error}",
                "Policy file must contain version, mode, mx and max_age fields",
            ],
            error=policy_error,
        )

    mode = policy["mode"]
    score, status = _MODE_SCORES.get(mode, _DEFAULT_MODE_SCORE)
    recommendations: list[str] = []

    if mode == "testing":
        recommendations.append(
            "MTA-STS is in testing mode. Once validated, switch to enforce mode."
        )
    elif mode == "none":
        recommendations.append("MTA-STS mode is none. Set it to testing or enforce.")

    max_age = policy["max_age"]
    if max_age < _MIN_MAX_AGE:
        score -= 10
        recommendations.append(
            f"max_age is {max_age} seconds ({round(max_age / 86400)} days). "
            f"Consider at least one week ({_MIN_MAX_AGE} seconds)."
        )

    if not policy["mx"]:
        score -= 20
        status = STATUS_WARN
        recommendations.append("No MX patterns defined in policy. Add mx: entries for your mail servers.")

    return CheckResult(
        status,
        score,
        {
            "has_record": True,
            "txt_record": txt_record,
            "record_id": record_id,
            "policy": {
                "version": policy["version"],
                "mode": mode,
                "mx_patterns": policy["mx"],
                "max_age": max_age,
                "max_age_days": round(max_age / 86400),
            },
        },
        recommendations,
    )
