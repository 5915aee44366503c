"""
Core value types shared by the check runners, the cache and the scorer.

Every check produces exactly one CheckResult.  Check kinds, their cache
lifetimes, their scoring weights and the reputation multipliers are all
declared here so that no other module hard-codes them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Final


class CheckType(str, Enum):
    """The eleven protocol checks run against a domain."""

    MX = "mx"
    SPF = "spf"
    DKIM = "dkim"
    DMARC = "dmarc"
    SMTP = "smtp"
    MTA_STS = "mta_sts"
    TLS_RPT = "tls_rpt"
    BIMI_RECORD = "bimi_record"
    BIMI_VMC = "bimi_vmc"
    BLACKLIST = "blacklist"
    COMPLIANCE = "compliance"


class ReputationTier(str, Enum):
    """Blacklist exposure classification derived from the blacklist check."""

    CLEAN = "clean"
    MINOR_ONLY = "minor_only"
    MAJOR = "major"
    MULTI_MAJOR = "multi_major"
    UNKNOWN = "unknown"


STATUS_PASS: Final[str] = "pass"
STATUS_WARN: Final[str] = "warn"
STATUS_FAIL: Final[str] = "fail"

# ---------------------------------------------------------------------------
# Scoring weights (advisory checks are absent and never weighted)
# ---------------------------------------------------------------------------

SCORING_WEIGHTS: Final[dict[CheckType, int]] = {
    CheckType.DMARC: 30,
    CheckType.SPF: 25,
    CheckType.DKIM: 25,
    CheckType.MX: 10,
    CheckType.SMTP: 10,
}

# ---------------------------------------------------------------------------
# Cache lifetimes (seconds)
# ---------------------------------------------------------------------------

CACHE_TTLS: Final[dict[CheckType, int]] = {
    CheckType.MX: 300,
    CheckType.SPF: 300,
    CheckType.DKIM: 300,
    CheckType.DMARC: 300,
    CheckType.SMTP: 300,
    CheckType.COMPLIANCE: 300,
    CheckType.MTA_STS: 900,
    CheckType.TLS_RPT: 900,
    CheckType.BIMI_RECORD: 900,
    CheckType.BIMI_VMC: 900,
    # Delisting takes 24-48h to propagate.
    CheckType.BLACKLIST: 86400,
}

REPUTATION_MULTIPLIERS: Final[dict[ReputationTier, float]] = {
    ReputationTier.CLEAN: 1.0,
    ReputationTier.MINOR_ONLY: 0.85,
    ReputationTier.MAJOR: 0.5,
    ReputationTier.MULTI_MAJOR: 0.25,
    ReputationTier.UNKNOWN: 1.0,
}


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (98.5 -> 99).

    The builtin round() uses banker's rounding, which would report 98.5
    as 98.
    """
    return int(math.floor(value + 0.5))


# ---------------------------------------------------------------------------
# CheckResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckResult:
    """Normalized verdict of a single check invocation.

    Attributes:
        status: One of "pass", "warn", "fail".
        score: Integer score in the range 0-100.
        details: Check-specific structured data.  Field names are stable
            because dashboards and history storage read them.
        recommendations: Human-readable remediation hints.
        error: Populated when the verdict stems from a lookup/fetch failure.
    """

    status: str
    score: int
    details: dict[str, Any] = field(default_factory=dict)
    recommendations: list[str] = field(default_factory=list)
    error: str | None = None

    def __post_init__(self) -> None:
        if self.status not in (STATUS_PASS, STATUS_WARN, STATUS_FAIL):
            raise ValueError(f"Invalid check status: {self.status!r}")
        clamped = max(0, min(100, int(self.score)))
        object.__setattr__(self, "score", clamped)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation."""
        data: dict[str, Any] = {
            "status": self.status,
            "score": self.score,
            "details": self.details,
            "recommendations": list(self.recommendations),
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CheckResult:
        """Rebuild a CheckResult from the output of :meth:`to_dict`."""
        return cls(
            status=data["status"],
            score=data["score"],
            details=data.get("details") or {},
            recommendations=list(data.get("recommendations") or []),
            error=data.get("error"),
        )
