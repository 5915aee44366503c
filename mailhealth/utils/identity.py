"""
Caller identity and tier resolution.

Authentication happens upstream; an authenticating proxy forwards the
user id, email and plan tier in ``X-User-*`` headers.  Requests without a
user id are anonymous and keyed by client IP.  The resolved CallerContext
is passed explicitly to the quota guard and the scan engine, never stored
in a global.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from flask import Request

ANONYMOUS: Final[str] = "anonymous"
AUTHENTICATED: Final[str] = "authenticated"


@dataclass(frozen=True)
class TierLimits:
    hourly: int
    daily: int


TIER_LIMITS: Final[dict[str, TierLimits]] = {
    "free": TierLimits(hourly=5, daily=300),
    "growth": TierLimits(hourly=10, daily=600),
    "scale": TierLimits(hourly=20, daily=1200),
    "enterprise": TierLimits(hourly=30, daily=9999),
}

# Seconds a cached check result stays acceptable to each caller tier.
CACHE_MAX_AGE: Final[dict[str, int]] = {
    ANONYMOUS: 300,
    "free": 1800,
    "growth": 900,
    "scale": 300,
    "enterprise": 0,
}

DEFAULT_TIER: Final[str] = "free"


@dataclass(frozen=True)
class CallerContext:
    """Who is asking for a scan, resolved once per request."""

    ip: str
    user_id: str | None = None
    email: str | None = None
    tier: str = DEFAULT_TIER

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    @property
    def auth_status(self) -> str:
        return ANONYMOUS if self.is_anonymous else AUTHENTICATED

    @property
    def identity_key(self) -> str:
        if self.is_anonymous:
            return f"ip:{self.ip}"
        return f"user:{self.user_id}"

    @property
    def limits(self) -> TierLimits:
        """Quota ceilings; anonymous callers get the free-tier limits."""
        if self.is_anonymous:
            return TIER_LIMITS[DEFAULT_TIER]
        return TIER_LIMITS.get(self.tier, TIER_LIMITS[DEFAULT_TIER])

    @property
    def cache_max_age(self) -> int:
        if self.is_anonymous:
            return CACHE_MAX_AGE[ANONYMOUS]
        return CACHE_MAX_AGE.get(self.tier, CACHE_MAX_AGE[DEFAULT_TIER])


def _client_ip(request: Request) -> str:
    # Forwarded headers are resolved by ProxyFix for the configured number of
    # trusted hops; the raw header is client-controlled.
    return request.remote_addr or "unknown"


def caller_from_request(request: Request) -> CallerContext:
    """Build a CallerContext from the forwarded identity headers."""
    user_id = (request.headers.get("X-User-Id") or "").strip() or None
    tier = (request.headers.get("X-User-Tier") or DEFAULT_TIER).strip().lower()
    if tier not in TIER_LIMITS:
        tier = DEFAULT_TIER
    return CallerContext(
        ip=_client_ip(request),
        user_id=user_id,
        email=(request.headers.get("X-User-Email") or "").strip() or None,
        tier=tier if user_id else DEFAULT_TIER,
    )
