"""
BIMI checks (Brand Indicators for Message Identification).

BIMI lets brands display their logo in email clients by publishing a DNS
TXT record at ``default._bimi.{domain}``.  Two verdicts come out of one
record:

- bimi_record: the record itself (``v=BIMI1`` and a fetchable SVG ``l=``)
- bimi_vmc: the Verified Mark Certificate referenced by ``a=``

Both are advisory.  A missing record is a warning, never a failure.

The record lookup is exposed on its own (:func:`get_bimi_record`) and both
checks accept a pre-fetched record, so a caller that needs both verdicts
can share a single DNS query through :func:`check_bimi_all`.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from mailhealth.checker.http import fetch
from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

DEFAULT_SELECTOR = "default"

_PEM_MARKER = "-----BEGIN CERTIFICATE-----"
_CERT_CONTENT_TYPE_RE = re.compile(r"application/(x-pem-file|pkix-cert|x-x509-ca-cert)", re.IGNORECASE)

# Sentinel distinguishing "not pre-fetched" from "pre-fetched, no record".
_UNSET: Any = object()


# ---------------------------------------------------------------------------
# Shared record lookup
# ---------------------------------------------------------------------------


def get_bimi_record(
    domain: str,
    selector: str = DEFAULT_SELECTOR,
    settings: ScanSettings | None = None,
) -> dict[str, str] | None:
    """Fetch and parse the BIMI record of *domain*.

    Returns:
        A dict with keys v, l, a and raw (missing tags are empty strings),
        or None when no TXT record exists at ``{selector}._bimi.{domain}``.
    """
    dns_result = query_dns(f"{selector}._bimi.{domain}", "TXT", settings)
    if not dns_result["success"] or not dns_result["records"]:
        return None

    raw = "".join(dns_result["records"])
    parsed: dict[str, str] = {}
    for part in raw.split(";"):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            parsed[key.strip().lower()] = value.strip()

    return {
        "v": parsed.get("v", ""),
        "l": parsed.get("l", ""),
        "a": parsed.get("a", ""),
        "raw": raw,
    }


def _status_for(issues: list[str], score: int) -> str:
    if not issues:
        return STATUS_PASS
    return STATUS_WARN if score >= 60 else STATUS_FAIL


# ---------------------------------------------------------------------------
# BIMI record
# ---------------------------------------------------------------------------


def check_bimi_record(
    domain: str,
    settings: ScanSettings | None = None,
    prefetched: dict[str, str] | None = _UNSET,
) -> CheckResult:
    """Validate the BIMI record and its logo URL.

    Args:
        domain: The domain name to check.
        settings: Optional ScanSettings for resolver and HTTP configuration.
        prefetched: Result of :func:`get_bimi_record` when already known
            (None meaning "looked up, nothing found").
    """
    settings = settings or ScanSettings()
    parsed = get_bimi_record(domain, settings=settings) if prefetched is _UNSET else prefetched

    if not parsed:
        return CheckResult(
            STATUS_WARN,
            0,
            {"has_record": False, "selector": DEFAULT_SELECTOR},
            [
                "No BIMI record found at default._bimi.yourdomain",
                "Add a BIMI TXT record: v=BIMI1; l=https://yourdomain/logo.svg",
            ],
        )

    issues: list[str] = []
    score = 100

    if parsed["v"].upper() != "BIMI1":
        issues.append(f'Invalid version tag: expected "BIMI1", found "{parsed["v"]}"')
        score -= 30

    if not parsed["l"]:
        issues.append("Missing l= tag (logo URL is required)")
        score -= 40
    else:
        try:
            resp = fetch(parsed["l"], settings.http_timeout)
            logo_status = resp.status_code
            content_type = resp.headers.get("Content-Type", "")
        except requests.RequestException as exc:
            logger.info("BIMI logo fetch failed for %s: %s", domain, exc)
            logo_status, content_type = 0, ""

        if logo_status != 200:
            issues.append(f"Logo URL returned HTTP {logo_status} (expected 200)")
            score -= 20
        elif "svg" not in content_type.lower():
            issues.append(f'Logo content-type is "{content_type}" (expected SVG)')
            score -= 10

    return CheckResult(
        _status_for(issues, score),
        score,
        {
            "has_record": True,
            "selector": DEFAULT_SELECTOR,
            "raw_record": parsed["raw"],
            "version": parsed["v"],
            "logo_url": parsed["l"] or None,
            "vmc_url": parsed["a"] or None,
            "has_vmc": bool(parsed["a"]),
        },
        issues or ["BIMI record is properly configured"],
    )


# ---------------------------------------------------------------------------
# BIMI VMC
# ---------------------------------------------------------------------------


def check_bimi_vmc(
    domain: str,
    settings: ScanSettings | None = None,
    prefetched: dict[str, str] | None = _UNSET,
) -> CheckResult:
    """Validate the Verified Mark Certificate referenced by the BIMI ``a=`` tag."""
    settings = settings or ScanSettings()
    parsed = get_bimi_record(domain, settings=settings) if prefetched is _UNSET else prefetched

    if not parsed:
        return CheckResult(
            STATUS_WARN,
            0,
            {"has_record": False, "has_vmc": False},
            ["No BIMI record found; the VMC check requires a BIMI record first"],
        )

    if not parsed["a"]:
        return CheckResult(
            STATUS_WARN,
            50,
            {"has_record": True, "has_vmc": False, "raw_record": parsed["raw"]},
            [
                "BIMI record found but no VMC certificate specified (a= tag is empty)",
                "Without a VMC some email clients will not display your logo",
            ],
        )

    vmc_url = parsed["a"]
    try:
        resp = fetch(vmc_url, settings.http_timeout)
    except requests.RequestException as exc:
        logger.info("VMC fetch failed for %s: %s", domain, exc)
        return CheckResult(
            STATUS_FAIL,
            30,
            {
                "has_record": True,
                "has_vmc": True,
                "vmc_url": vmc_url,
                "fetch_error": str(exc),
            },
            [f"Could not fetch VMC certificate from {vmc_url}"],
            error=str(exc),
        )

    content_type = resp.headers.get("Content-Type", "")
    is_pem = _PEM_MARKER in resp.text

    issues: list[str] = []
    score = 100

    if resp.status_code != 200:
        issues.append(f"VMC URL returned HTTP {resp.status_code} (expected 200)")
        score -= 30

    if not is_pem and not _CERT_CONTENT_TYPE_RE.search(content_type):
        issues.append(
            f"VMC does not appear to be a valid PEM certificate "
            f"(Content-Type: {content_type or 'unknown'})"
        )
        score -= 30

    return CheckResult(
        _status_for(issues, score),
        score,
        {
            "has_record": True,
            "has_vmc": True,
            "vmc_url": vmc_url,
            "vmc_status": resp.status_code,
            "vmc_content_type": content_type,
            "vmc_is_pem": is_pem,
        },
        issues or ["VMC certificate is properly configured"],
    )


# ---------------------------------------------------------------------------
# Combined entry point
# ---------------------------------------------------------------------------


def check_bimi_all(
    domain: str,
    settings: ScanSettings | None = None,
) -> tuple[CheckResult, CheckResult]:
    """Run both BIMI checks on a single DNS lookup.

    Returns:
        A (bimi_record, bimi_vmc) tuple of CheckResults.
    """
    settings = settings or ScanSettings()
    record = get_bimi_record(domain, settings=settings)

    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="bimi") as executor:
        record_future = executor.submit(check_bimi_record, domain, settings, record)
        vmc_future = executor.submit(check_bimi_vmc, domain, settings, record)
        return record_future.result(), vmc_future.result()
