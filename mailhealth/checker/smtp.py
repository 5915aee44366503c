"""
Advisory SMTP server listing.

Lists the domain's mail servers and resolves the IPv4 address of the
first three.  No connection to port 25 is ever attempted: scanning hosts
commonly have outbound SMTP blocked, so a live probe would report false
failures.
"""

from __future__ import annotations

import logging
from typing import Any

from mailhealth.checker.resolver import parse_mx_records, query_dns
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import STATUS_FAIL, STATUS_PASS, STATUS_WARN, CheckResult

logger = logging.getLogger(__name__)

_MAX_RESOLVED_SERVERS = 3
_UNRESOLVED = "Could not resolve"
_NOT_CHECKED = "Not checked"


def check_smtp(domain: str, settings: ScanSettings | None = None) -> CheckResult:
    """List the SMTP servers of *domain* without connecting to them.

    Returns:
        A CheckResult whose details carry server_count, servers
        (hostname, priority, ip), primary_server and has_redundancy.
    """
    dns_result = query_dns(domain, "MX", settings)
    mx_records = parse_mx_records(dns_result["records"]) if dns_result["success"] else []

    if not mx_records:
        return CheckResult(
            STATUS_FAIL,
            0,
            {"servers": [], "server_count": 0},
            [
                "Add MX records to your DNS configuration",
                "Example: an MX record with priority 10 pointing to mail.yourdomain",
            ],
            error=dns_result.get("error_message") or "No MX records found for domain",
        )

    servers: list[dict[str, Any]] = []
    unresolved = 0
    for index, mx in enumerate(mx_records):
        ip = _NOT_CHECKED
        if index < _MAX_RESOLVED_SERVERS:
            a_result = query_dns(mx["exchange"], "A", settings)
            if a_result["success"] and a_result["records"]:
                ip = a_result["records"][0]
            else:
                ip = _UNRESOLVED
                unresolved += 1
        servers.append({"hostname": mx["exchange"], "priority": mx["priority"], "ip": ip})

    score = 100
    status = STATUS_PASS
    recommendations: list[str] = []

    if len(servers) < 2:
        score -= 10
        status = STATUS_WARN
        recommendations.append("Consider adding a backup MX server for redundancy")

    if unresolved:
        score -= 10 * unresolved
        status = STATUS_WARN
        recommendations.append(
            f"{unresolved} MX server(s) could not be resolved to an IPv4 address"
        )

    recommendations.append("Verify MX hostnames are correct and resolvable")

    return CheckResult(
        status,
        score,
        {
            "server_count": len(servers),
            "servers": servers,
            "primary_server": servers[0]["hostname"],
            "has_redundancy": len(servers) >= 2,
        },
        recommendations,
    )
