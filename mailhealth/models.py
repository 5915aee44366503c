"""
SQLAlchemy models for the mail health scanner.

Three tables back the scanning core:
  QuotaState, CachedCheckResult, ScanEvent

Window starts and cache timestamps are stored as epoch seconds (floats) so
that elapsed-time arithmetic is identical on SQLite, which drops timezone
information from DateTime columns.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from mailhealth import db

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def _load_json(value: str | None, *, default: object = None) -> object:
    """Safely deserialise a JSON string, returning *default* on any error."""
    if default is None:
        default = {}
    if not value:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


# ---------------------------------------------------------------------------
# QuotaState
# ---------------------------------------------------------------------------


class QuotaState(db.Model):
    """Hourly and daily scan counters for one caller identity."""

    __tablename__ = "quota_states"

    identity_key: db.Mapped[str] = db.mapped_column(db.String(255), primary_key=True)
    hour_count: db.Mapped[int] = db.mapped_column(db.Integer, default=0, nullable=False)
    hour_window_start: db.Mapped[float] = db.mapped_column(db.Float, nullable=False)
    day_count: db.Mapped[int] = db.mapped_column(db.Integer, default=0, nullable=False)
    day_window_start: db.Mapped[float] = db.mapped_column(db.Float, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<QuotaState {self.identity_key!r} hour={self.hour_count} day={self.day_count}>"
        )


# ---------------------------------------------------------------------------
# CachedCheckResult
# ---------------------------------------------------------------------------


class CachedCheckResult(db.Model):
    """Serialized check result keyed by (check_type, domain)."""

    __tablename__ = "cached_check_results"
    __table_args__ = (
        db.UniqueConstraint("check_type", "domain", name="uq_cache_check_domain"),
        db.Index("ix_cache_expires_at", "expires_at"),
    )

    id: db.Mapped[int] = db.mapped_column(db.Integer, primary_key=True)
    check_type: db.Mapped[str] = db.mapped_column(db.String(20), nullable=False)
    domain: db.Mapped[str] = db.mapped_column(db.String(255), nullable=False)
    payload: db.Mapped[str] = db.mapped_column(db.Text, nullable=False)  # JSON string
    cached_at: db.Mapped[float] = db.mapped_column(db.Float, nullable=False)
    expires_at: db.Mapped[float] = db.mapped_column(db.Float, nullable=False)

    def get_payload(self) -> dict:
        """Deserialise payload JSON, returning an empty dict on failure."""
        return _load_json(self.payload)

    def __repr__(self) -> str:
        return f"<CachedCheckResult {self.check_type}:{self.domain}>"


# ---------------------------------------------------------------------------
# ScanEvent
# ---------------------------------------------------------------------------


class ScanEvent(db.Model):
    """One record per scan attempt, updated with scores when the scan completes."""

    __tablename__ = "scan_events"
    __table_args__ = (
        db.Index("ix_scan_events_domain_ts", "domain", "ts"),
    )

    id: db.Mapped[str] = db.mapped_column(db.String(40), primary_key=True)
    ts: db.Mapped[datetime] = db.mapped_column(
        db.DateTime(timezone=True), default=_utcnow, nullable=False
    )
    domain: db.Mapped[str] = db.mapped_column(db.String(255), nullable=False)
    auth_status: db.Mapped[str] = db.mapped_column(db.String(20), nullable=False)
    identity: db.Mapped[str] = db.mapped_column(db.String(255), nullable=False)
    user_id: db.Mapped[str | None] = db.mapped_column(db.String(255), nullable=True)
    user_email: db.Mapped[str | None] = db.mapped_column(db.String(255), nullable=True)
    ip: db.Mapped[str | None] = db.mapped_column(db.String(64), nullable=True)
    limit_hit: db.Mapped[bool] = db.mapped_column(db.Boolean, default=False, nullable=False)

    # Filled in by complete_scan_event()
    config_score: db.Mapped[int | None] = db.mapped_column(db.Integer, nullable=True)
    final_score: db.Mapped[int | None] = db.mapped_column(db.Integer, nullable=True)
    reputation_tier: db.Mapped[str | None] = db.mapped_column(db.String(20), nullable=True)
    check_statuses: db.Mapped[str | None] = db.mapped_column(db.Text, nullable=True)  # JSON string
    completed_at: db.Mapped[datetime | None] = db.mapped_column(
        db.DateTime(timezone=True), nullable=True
    )

    def get_check_statuses(self) -> dict:
        """Deserialise check_statuses JSON, returning an empty dict on failure."""
        return _load_json(self.check_statuses)

    def __repr__(self) -> str:
        return f"<ScanEvent {self.id} domain={self.domain!r} limit_hit={self.limit_hit}>"
