"""
TLS-RPT check (RFC 8460).

Looks up ``_smtp._tls.{domain}``, requires ``v=TLSRPTv1`` and validates
each comma-separated ``rua`` reporting URI (mailto: or https:).
"""

from __future__ import annotations

import logging
import re
from typing import Any

from mailhealth.checker.resolver import query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def parse_tls_rpt_record(record: str) -> dict[str, Any] | None:
    """Parse a TLS-RPT record into {version, rua}.

    Returns None unless the version is TLSRPTv1 and at least one rua URI
    is present.
    """
    version: str | None = None
    rua: list[str] = []

    for part in record.split(";"):
        key, _, value = part.strip().partition("=")
        key = key.strip().lower()
        value = value.strip()
        if key == "v":
            version = value
        elif key == "rua":
            rua = [uri.strip() for uri in value.split(",") if uri.strip()]

    if version == "TLSRPTv1" and rua:
        return {"version": version, "rua": rua}
    return None


def validate_rua(uri: str) -> dict[str, Any]:
    """Classify one reporting URI as a valid/invalid mailto, https or unknown address."""
    if uri.lower().startswith("mailto:"):
        address = uri[len("mailto:"):]
        return {"address": address, "type": "mailto", "valid": bool(_EMAIL_RE.match(address))}
    if uri.lower().startswith("https://"):
        return {"address": uri, "type": "https", "valid": True}
    return {"address": uri, "type": "unknown", "valid": False}


def check_tls_rpt(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """Check the TLS-RPT record of *domain*.

    Returns:
        A CheckResult whose details carry has_record, txt_record, version,
        rua [{address, type, valid}], has_mailto and has_https.
    """
    dns_result = query_dns(f"_smtp._tls.{domain}", "TXT", settings)
    joined = "".join(dns_result["records"]).strip()

    if "v=TLSRPTv1" not in joined:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"has_record": False, "txt_record": None},
            [
                "Add a TLS-RPT TXT record at _smtp._tls.yourdomain",
                "Example: v=TLSRPTv1; rua=mailto:tlsrpt@yourdomain",
            ],
        )

    parsed = parse_tls_rpt_record(joined)
    if parsed is None:
        return CheckResult(
            STATUS_WARN,
            40,
            {
                "has_record": True,
                "txt_record": joined,
                "parse_error": "Could not parse TLS-RPT record",
            },
            [
                "TLS-RPT record found but could not be parsed",
                "Ensure the format is: v=TLSRPTv1; rua=mailto:address@yourdomain",
            ],
        )

    validated = [validate_rua(uri) for uri in parsed["rua"]]
    valid = [r for r in validated if r["valid"]]
    invalid = [r for r in validated if not r["valid"]]

    score = 100
    status = STATUS_PASS
    recommendations: list[str] = []

    if not valid:
        score = 30
        status = STATUS_FAIL
        recommendations.append("No valid reporting addresses found in TLS-RPT record")
        recommendations.append("Add a valid mailto: or https:// address in the rua field")
    elif invalid:
        score -= 10 * len(invalid)
        status = STATUS_WARN
        recommendations.append(
            f"Found {len(invalid)} invalid reporting address(es): "
            + ", ".join(r["address"] for r in invalid)
        )

    has_mailto = any(r["type"] == "mailto" for r in valid)
    has_https = any(r["type"] == "https" for r in valid)
    if not has_mailto:
        recommendations.append("Consider adding a mailto: address for compatibility with all reporters")

    return CheckResult(
        status,
        score,
        {
            "has_record": True,
            "txt_record": joined,
            "version": parsed["version"],
            "rua": validated,
            "has_mailto": has_mailto,
            "has_https": has_https,
        },
        recommendations,
    )
