"""
Per-(check, domain) result cache backed by the ``cached_check_results`` table.

Keys are lower-cased.  Each check type has its own TTL; callers may narrow
the freshness window further with ``max_age`` (the caller tier's override),
and a ``max_age`` of 0 bypasses the cache.

Cache I/O is best-effort: a failed read is a miss and a failed write is
logged and dropped, so the surrounding scan never fails because of it.
"""

from __future__ import annotations

import json
import logging
import time

from sqlalchemy.exc import SQLAlchemyError

from mailhealth import db
from mailhealth.checker.types import CACHE_TTLS, CheckResult, CheckType
from mailhealth.models import CachedCheckResult

logger = logging.getLogger(__name__)


def _key(check_type: CheckType, domain: str) -> tuple[str, str]:
    return CheckType(check_type).value, domain.strip().rstrip(".").lower()


def _freshness_window(check_type: CheckType, max_age: int | None) -> int | None:
    ttl = CACHE_TTLS.get(CheckType(check_type))
    if ttl is None:
        return None
    if max_age is None:
        return ttl
    return min(ttl, max_age)


def get_cached(
    check_type: CheckType,
    domain: str,
    max_age: int | None = None,
    now: float | None = None,
) -> CheckResult | None:
    """Return the cached result for (check_type, domain) if still fresh.

    Args:
        check_type: The check whose result is wanted.
        domain: Domain name (case-insensitive).
        max_age: Optional caller-specific ceiling in seconds.
        now: Current epoch seconds; defaults to time.time().

    Returns:
        The stored CheckResult unmodified, or None on miss, expiry or error.
    """
    window = _freshness_window(check_type, max_age)
    if not window:
        return None

    now = time.time() if now is None else now
    check_value, domain_key = _key(check_type, domain)

    try:
        row = db.session.execute(
            db.select(CachedCheckResult).where(
                CachedCheckResult.check_type == check_value,
                CachedCheckResult.domain == domain_key,
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as exc:
        logger.warning("Cache read failed for %s:%s: %s", check_value, domain_key, exc)
        db.session.rollback()
        return None

    if row is None or now - row.cached_at >= window:
        return None

    payload = row.get_payload()
    try:
        return CheckResult.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Discarding corrupt cache entry %s:%s: %s", check_value, domain_key, exc)
        return None


def set_cached(
    check_type: CheckType,
    domain: str,
    result: CheckResult,
    now: float | None = None,
) -> None:
    """Store *result* for (check_type, domain); failures are logged and ignored."""
    ttl = CACHE_TTLS.get(CheckType(check_type))
    if ttl is None:
        return

    now = time.time() if now is None else now
    check_value, domain_key = _key(check_type, domain)

    try:
        row = db.session.execute(
            db.select(CachedCheckResult).where(
                CachedCheckResult.check_type == check_value,
                CachedCheckResult.domain == domain_key,
            )
        ).scalar_one_or_none()
        if row is None:
            row = CachedCheckResult(check_type=check_value, domain=domain_key)
            db.session.add(row)
        row.payload = json.dumps(result.to_dict(), sort_keys=True)
        row.cached_at = now
        row.expires_at = now + ttl
        db.session.commit()
    except (SQLAlchemyError, TypeError, ValueError) as exc:
        logger.warning("Cache write failed for %s:%s: %s", check_value, domain_key, exc)
        db.session.rollback()


def purge_expired(now: float | None = None) -> int:
    """Delete every entry past its TTL and return the number removed."""
    now = time.time() if now is None else now
    result = db.session.execute(
        db.delete(CachedCheckResult).where(CachedCheckResult.expires_at <= now)
    )
    db.session.commit()
    removed = result.rowcount or 0
    logger.info("Purged %d expired cache entries", removed)
    return removed
