"""
Configuration module for the mail health scanner.

Loads settings from environment variables with sensible defaults.
"""

import os


def _env_list(name: str, default: str = "") -> list[str]:
    """Split a comma-separated environment variable into trimmed items."""
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Base configuration shared by all environments."""

    SECRET_KEY: str = os.environ.get("SECRET_KEY", "dev-secret-change-me")

    # Database
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL",
        "sqlite:///mailhealth.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    # SQLite tuning: a 30-second busy timeout so writers wait instead of failing.
    SQLALCHEMY_ENGINE_OPTIONS: dict = {
        "connect_args": {"timeout": 30},
    }

    # Payload limit for JSON scan requests
    MAX_CONTENT_LENGTH: int = 64 * 1024

    # DNS resolution
    DNS_RESOLVERS: list[str] = _env_list("DNS_RESOLVERS", "8.8.8.8,1.1.1.1")
    DNS_TIMEOUT: float = float(os.environ.get("DNS_TIMEOUT", "5"))
    DNS_RETRIES: int = int(os.environ.get("DNS_RETRIES", "2"))

    # HTTPS fetches (BIMI logo/VMC, compliance pages) and the MTA-STS policy
    HTTP_TIMEOUT: float = float(os.environ.get("HTTP_TIMEOUT", "8"))
    MTA_STS_TIMEOUT: float = float(os.environ.get("MTA_STS_TIMEOUT", "10"))

    # External RBL aggregator queried by the blacklist check
    RBL_API_URL: str = os.environ.get("RBL_API_URL", "https://rbl-check.org/rbl_api.php")

    # Comma-separated glob patterns refused before any network call
    BLOCKED_DOMAINS: list[str] = _env_list("BLOCKED_DOMAINS")

    # Scan orchestration
    WAVE2_DELAY: float = float(os.environ.get("WAVE2_DELAY", "0.1"))
    WAVE3_DELAY: float = float(os.environ.get("WAVE3_DELAY", "0.2"))
    CHECK_WORKERS: int = int(os.environ.get("CHECK_WORKERS", "8"))

    # Client-visible daily allowance for anonymous callers
    ANON_DAILY_SCANS: int = int(os.environ.get("ANON_DAILY_SCANS", "3"))

    # Reverse proxies in front of the app that append to X-Forwarded-For.
    # 0 means the socket peer address is the client address.
    PROXY_FIX_X_FOR: int = int(os.environ.get("PROXY_FIX_X_FOR", "0"))
