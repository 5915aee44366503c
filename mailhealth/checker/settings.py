"""
Network settings passed explicitly to every check runner.

Check runners execute on worker threads without a Flask application
context, so they never read ``current_app``.  The orchestrator builds one
ScanSettings per request from the app config and hands it down.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

DEFAULT_RESOLVERS: list[str] = ["8.8.8.8", "1.1.1.1"]


@dataclass(frozen=True)
class ScanSettings:
    """Resolver, HTTP and concurrency knobs for one scan."""

    resolvers: list[str] = field(default_factory=lambda: list(DEFAULT_RESOLVERS))
    dns_timeout: float = 5.0
    dns_retries: int = 2
    http_timeout: float = 8.0
    mta_sts_timeout: float = 10.0
    rbl_api_url: str = "https://rbl-check.org/rbl_api.php"
    max_workers: int = 8

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> ScanSettings:
        """Build settings from a Flask config mapping, keeping defaults for missing keys."""
        defaults = cls()
        return cls(
            resolvers=list(config.get("DNS_RESOLVERS") or defaults.resolvers),
            dns_timeout=float(config.get("DNS_TIMEOUT", defaults.dns_timeout)),
            dns_retries=int(config.get("DNS_RETRIES", defaults.dns_retries)),
            http_timeout=float(config.get("HTTP_TIMEOUT", defaults.http_timeout)),
            mta_sts_timeout=float(config.get("MTA_STS_TIMEOUT", defaults.mta_sts_timeout)),
            rbl_api_url=config.get("RBL_API_URL", defaults.rbl_api_url),
            max_workers=int(config.get("CHECK_WORKERS", defaults.max_workers)),
        )
