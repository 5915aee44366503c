"""
DKIM public key discovery.

Probes a list of common selectors at ``{selector}._domainkey.{domain}``
in parallel, keeps those publishing a ``v=DKIM1`` record, classifies the
key algorithm (RSA or Ed25519) and estimates RSA key strength from the
length of the base64 ``p=`` value.  Ed25519 keys have a fixed size and are
never reported as weak.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable

from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

DEFAULT_SELECTORS: list[str] = [
    "default", "mail", "selector1", "selector2", "s1", "s2",
    "k1", "k2", "google", "dkim", "x",
]

_MAX_WORKERS = 6

# 1024-bit RSA is about 216 base64 chars, 2048-bit about 392.
_RSA_1024_MAX_LEN = 250
_RSA_2048_MAX_LEN = 400

_ED25519_BITS = 256


def _selector_list(extra: Iterable[str] | None) -> list[str]:
    """Default selectors followed by caller-supplied ones, de-duplicated."""
    selectors = list(DEFAULT_SELECTORS)
    for selector in extra or ():
        selector = selector.strip().lower()
        if selector and selector not in selectors:
            selectors.append(selector)
    return selectors


def _extract_tag(record: str, tag: str) -> str:
    """Return the value of ``tag=`` in a DKIM record, or an empty string."""
    for part in record.split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name.strip().lower() == tag:
            return "".join(value.split())
    return ""


def estimate_key_bits(public_key_b64: str) -> int:
    """Estimate RSA modulus size from the base64 length of the public key."""
    length = len(public_key_b64)
    if length < _RSA_1024_MAX_LEN:
        return 1024
    if length < _RSA_2048_MAX_LEN:
        return 2048
    return 4096


def parse_dkim_record(selector: str, record: str) -> dict[str, Any]:
    """Classify one published DKIM record.

    Returns:
        A dict with keys: selector, found, version, key_algo, key_bits.
    """
    key_type = _extract_tag(record, "k").lower()
    if key_type == "ed25519":
        key_algo = "Ed25519"
        key_bits = _ED25519_BITS
    else:
        key_algo = "RSA"
        key_bits = estimate_key_bits(_extract_tag(record, "p"))

    return {
        "selector": selector,
        "found": True,
        "version": "DKIM1",
        "key_algo": key_algo,
        "key_bits": key_bits,
    }


def _probe_selector(domain: str, selector: str, settings: ScanSettings | None) -> dict[str, Any]:
    dns_result = query_dns(f"{selector}._domainkey.{domain}", "TXT", settings)
    if dns_result["success"]:
        record = "".join(dns_result["records"])
        if "v=DKIM1" in record:
            return parse_dkim_record(selector, record)
    return {"selector": selector, "found": False}


def is_weak_key(key: dict[str, Any]) -> bool:
    """True for RSA keys estimated at 1024 bits.  Ed25519 is never weak."""
    return key.get("key_algo") == "RSA" and key.get("key_bits") == 1024


def check_dkim(
    domain: str,
    settings: ScanSettings | None = None,
    selectors: Iterable[str] | None = None,
) -> CheckResult:
    """Discover DKIM keys for *domain*.

    Args:
        domain: The domain name to check.
        settings: Optional ScanSettings for resolver configuration.
        selectors: Extra selectors to probe in addition to the defaults.

    Returns:
        A CheckResult whose details carry selectors_probed, keys_found,
        found_keys and all_results.
    """
    selectors_to_try = _selector_list(selectors)

    with ThreadPoolExecutor(max_workers=_MAX_WORKERS, thread_name_prefix="dkim") as executor:
        all_results = list(
            executor.map(lambda s: _probe_selector(domain, s, settings), selectors_to_try)
        )

    found_keys = [r for r in all_results if r["found"]]
    logger.debug("DKIM %s: %d/%d selectors published", domain, len(found_keys), len(all_results))

    if not found_keys:
        return CheckResult(
            STATUS_FAIL,
            0,
            {
                "selectors_probed": selectors_to_try,
                "keys_found": 0,
                "found_keys": [],
                "all_results": all_results,
            },
            [
                "Generate a DKIM key pair for your domain",
                "Common selectors: default, mail, selector1",
                "Publish the DKIM public key as a TXT record at selector._domainkey.yourdomain",
            ],
        )

    score = 90
    status = STATUS_PASS
    recommendations: list[str] = []

    weak = [k for k in found_keys if is_weak_key(k)]
    if weak:
        score -= 20
        status = STATUS_WARN
        recommendations.append(
            f"Found {len(weak)} selector(s) with keys shorter than 2048 bits. "
            "Upgrade to 2048-bit RSA or Ed25519 keys."
        )

    if len(found_keys) < 2:
        recommendations.append("Consider publishing multiple DKIM selectors for key rotation")

    return CheckResult(
        status,
        score,
        {
            "selectors_probed": selectors_to_try,
            "keys_found": len(found_keys),
            "found_keys": found_keys,
            "all_results": all_results,
        },
        recommendations,
    )
