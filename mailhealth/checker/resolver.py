"""
Robust DNS resolver wrapper.

Provides thread-safe DNS resolution with configurable nameservers,
timeouts and retries, and converts every dnspython failure (NXDOMAIN,
SERVFAIL, timeouts) into a plain result dict so that check runners never
see an exception from a lookup.
"""

from __future__ import annotations

import logging
from typing import Any

import dns.exception
import dns.resolver

from mailhealth.checker.settings import DEFAULT_RESOLVERS, ScanSettings

logger = logging.getLogger(__name__)


def create_resolver(settings: ScanSettings) -> dns.resolver.Resolver:
    """Create a fresh dns.resolver.Resolver configured from *settings*.

    A new instance is created every time to ensure thread safety.

    Args:
        settings: ScanSettings instance containing resolver config.

    Returns:
        A configured dns.resolver.Resolver instance.
    """
    resolver = dns.resolver.Resolver(configure=False)
    resolver.nameservers = list(settings.resolvers) or list(DEFAULT_RESOLVERS)

    # lifetime bounds the whole query including retries
    resolver.timeout = float(settings.dns_timeout)
    resolver.lifetime = float(settings.dns_timeout * max(1, settings.dns_retries))
    resolver.retry_servfail = True

    return resolver


def _failure(error_type: str, message: str) -> dict[str, Any]:
    return {
        "success": False,
        "records": [],
        "error_type": error_type,
        "error_message": message,
    }


def query_dns(
    domain: str,
    rdtype: str,
    settings: ScanSettings | None = None,
) -> dict[str, Any]:
    """Execute a DNS query with robust error handling.

    Args:
        domain: The domain name to query.
        rdtype: DNS record type string (e.g. "TXT", "A", "MX").
        settings: Optional ScanSettings; defaults are used if not provided.

    Returns:
        A dict with keys:
            success (bool): Whether the query returned records.
            records (list[str]): The resolved record strings.
            error_type (str|None): NXDOMAIN, NO_ANSWER, DNS_ERROR or TIMEOUT.
            error_message (str|None): Human-readable error description.
    """
    resolver = create_resolver(settings or ScanSettings())

    try:
        answer = resolver.resolve(domain, rdtype)
        records: list[str] = []
        for rdata in answer:
            # TXT records come as multiple byte strings that need joining
            if rdtype.upper() == "TXT":
                records.append(b"".join(rdata.strings).decode("utf-8", errors="replace"))
            else:
                records.append(rdata.to_text())

        logger.debug("DNS query %s/%s returned %d records", domain, rdtype, len(records))
        return {
            "success": True,
            "records": records,
            "error_type": None,
            "error_message": None,
        }

    except dns.resolver.NXDOMAIN:
        logger.info("NXDOMAIN for %s/%s", domain, rdtype)
        return _failure("NXDOMAIN", f"Domain {domain} does not exist (NXDOMAIN)")

    except dns.resolver.NoAnswer:
        logger.info("NoAnswer for %s/%s", domain, rdtype)
        return _failure("NO_ANSWER", f"No {rdtype} records found for {domain}")

    except dns.resolver.NoNameservers:
        logger.warning("NoNameservers for %s/%s", domain, rdtype)
        return _failure(
            "DNS_ERROR",
            f"No nameservers available for {domain} (SERVFAIL or all failed)",
        )

    except dns.resolver.Timeout:
        logger.warning("Timeout for %s/%s", domain, rdtype)
        return _failure("TIMEOUT", f"DNS query timed out for {domain}/{rdtype}")

    except dns.exception.DNSException as exc:
        logger.error("DNSException for %s/%s: %s", domain, rdtype, exc)
        return _failure("DNS_ERROR", f"DNS error for {domain}/{rdtype}: {exc}")

    except Exception as exc:
        logger.exception("Unexpected error querying %s/%s", domain, rdtype)
        return _failure("DNS_ERROR", f"Unexpected error for {domain}/{rdtype}: {exc}")


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


def parse_mx_records(records: list[str]) -> list[dict[str, Any]]:
    """Parse ``"10 mx.example.com."`` strings into sorted priority/exchange dicts."""
    parsed: list[dict[str, Any]] = []
    for record in records:
        parts = record.strip().split()
        if len(parts) < 2:
            logger.debug("Skipping malformed MX record %r", record)
            continue
        try:
            priority = int(parts[0])
        except ValueError:
            logger.debug("Skipping MX record with bad priority %r", record)
            continue
        exchange = parts[1].rstrip(".").lower()
        if exchange:
            parsed.append({"exchange": exchange, "priority": priority})

    parsed.sort(key=lambda r: r["priority"])
    return parsed


def resolve_addresses(
    hostname: str,
    settings: ScanSettings | None = None,
    include_ipv6: bool = True,
) -> list[str]:
    """Return the A (and optionally AAAA) addresses of *hostname*, possibly empty."""
    addrs = list(query_dns(hostname, "A", settings)["records"])
    if include_ipv6:
        addrs.extend(query_dns(hostname, "AAAA", settings)["records"])
    return addrs
