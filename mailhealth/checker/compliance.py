"""
Website compliance heuristics.

Probes the canonical privacy-policy and terms pages of the domain's
website (https first, http as fallback) and scans the returned HTML for
consent wording, consent checkboxes and an email subscription form.

The score is advisory and never enters the weighted configuration score.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import requests

from mailhealth.checker.http import fetch
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

PRIVACY_PATHS: tuple[str, ...] = ("/privacy", "/privacy-policy", "/privacy-policy/")
TERMS_PATHS: tuple[str, ...] = ("/terms", "/terms-and-condition", "/terms-and-conditions", "/terms/")

_CHECKBOX_RE = re.compile(r"<input[^>]+type=[\"']?checkbox[\"']?[^>]*>", re.IGNORECASE)
_FORM_RE = re.compile(r"<form[^>]*>", re.IGNORECASE)
_EMAIL_INPUT_RE = re.compile(r"type=[\"']?email[\"']?", re.IGNORECASE)

_MAX_WORKERS = 7


# ---------------------------------------------------------------------------
# HTML heuristics
# ---------------------------------------------------------------------------


def looks_like_consent(html: str) -> bool:
    """Cookie-consent wording or an explicit agree/opt-in phrase."""
    lc = html.lower()
    if "cookie" in lc and ("consent" in lc or "accept" in lc or "agree" in lc):
        return True
    return any(phrase in lc for phrase in ("i agree", "i accept", "opt-in", "opt in"))


def has_consent_checkbox(html: str) -> bool:
    """Any checkbox input on a privacy page is treated as a consent control."""
    return bool(_CHECKBOX_RE.search(html))


def has_subscription_form(html: str) -> bool:
    """A form with an email input, or newsletter/sign-up wording."""
    if _FORM_RE.search(html) and _EMAIL_INPUT_RE.search(html):
        return True
    lc = html.lower()
    return any(word in lc for word in ("subscribe", "newsletter", "sign up"))


# ---------------------------------------------------------------------------
# Page probing
# ---------------------------------------------------------------------------


def _get_text(url: str, timeout: float) -> tuple[int, str]:
    """Return (status, body); body is empty unless the status is 2xx."""
    try:
        resp = fetch(url, timeout, accept="text/html")
    except requests.RequestException as exc:
        logger.debug("Compliance probe %s failed: %s", url, exc)
        return 0, ""
    if not resp.ok:
        return resp.status_code, ""
    return resp.status_code, resp.text


def _probe_path(domain: str, path: str, timeout: float) -> dict[str, Any]:
    """Fetch one path over https, falling back to http unless https returned 200."""
    https_status, text = _get_text(f"https://{domain}{path}", timeout)
    http_status = None
    if https_status != 200:
        http_status, text = _get_text(f"http://{domain}{path}", timeout)

    return {
        "path": path,
        "https_status": https_status,
        "http_status": http_status,
        "found": https_status == 200 or http_status == 200,
        "consent_checkbox": has_consent_checkbox(text) if text else False,
        "consent_message": looks_like_consent(text) if text else False,
        "subscription_form": has_subscription_form(text) if text else False,
    }


def check_compliance(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Check privacy/terms pages and consent signals on the domain's website."""
    settings = settings or ScanSettings()
    paths = PRIVACY_PATHS + TERMS_PATHS

    with ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="compliance") as executor:
        probes = list(executor.map(lambda p: _probe_path(domain, p, settings.http_timeout), paths))

    privacy_results = probes[: len(PRIVACY_PATHS)]
    terms_results = probes[len(PRIVACY_PATHS):]

    privacy_found = any(r["found"] for r in privacy_results)
    terms_found = any(r["found"] for r in terms_results)
    consent_found = any(r["consent_checkbox"] or r["consent_message"] for r in privacy_results)
    subscription_found = any(r["subscription_form"] for r in probes)

    status = STATUS_PASS
    score = 100
    recommendations: list[str] = []

    if not privacy_found and not terms_found:
        status = STATUS_FAIL
        score = 0
        recommendations.append(
            "Add privacy policy and terms pages (e.g. /privacy, /terms) that return HTTP 200."
        )
    else:
        if not privacy_found:
            status = STATUS_WARN
            score -= 30
            recommendations.append(
                "Add a privacy policy page (e.g. /privacy or /privacy-policy) that returns HTTP 200."
            )
        if not terms_found:
            status = STATUS_WARN
            score -= 20
            recommendations.append("Add a terms and conditions page (e.g. /terms) that returns HTTP 200.")
        if not consent_found:
            status = STATUS_WARN
            score -= 10
            recommendations.append("Provide a visible consent checkbox or consent message.")
        if not subscription_found:
            recommendations.append("Consider adding a newsletter subscription form if appropriate.")

    return CheckResult(
        status,
        score,
        {
            "privacy_results": privacy_results,
            "terms_results": terms_results,
            "privacy_found": privacy_found,
            "terms_found": terms_found,
            "consent_found": consent_found,
            "subscription_found": subscription_found,
        },
        recommendations,
    )
