"""
Scan analytics events.

One ScanEvent row is written per scan attempt, refused or not, and is
completed with the scores once the scan finishes.  Analytics are
best-effort: a failed write is logged and never fails the scan.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from mailhealth import db
from mailhealth.checker.types import SCORING_WEIGHTS
from mailhealth.models import ScanEvent
from mailhealth.utils.identity import CallerContext

logger = logging.getLogger(__name__)


def record_scan_event(
    scan_id: str,
    domain: str,
    caller: CallerContext,
    limit_hit: bool = False,
) -> None:
    """Persist the scan-attempt event for *scan_id*."""
    try:
        db.session.add(
            ScanEvent(
                id=scan_id,
                domain=domain,
                auth_status=caller.auth_status,
                identity=caller.identity_key,
                user_id=caller.user_id,
                user_email=caller.email,
                ip=caller.ip,
                limit_hit=limit_hit,
            )
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        logger.warning("Could not record scan event %s: %s", scan_id, exc)
        db.session.rollback()


def complete_scan_event(scan_id: str, report) -> None:
    """Attach scores, tier and core check statuses to an existing event.

    Args:
        scan_id: Identifier passed to :func:`record_scan_event`.
        report: The finished ScanReport.
    """
    try:
        event = db.session.get(ScanEvent, scan_id)
        if event is None:
            logger.warning("No scan event %s to complete", scan_id)
            return
        event.config_score = report.config_score
        event.final_score = report.final_score
        event.reputation_tier = report.reputation_tier
        event.check_statuses = json.dumps(
            {ct.value: report.results[ct].status for ct in SCORING_WEIGHTS if ct in report.results}
        )
        event.completed_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        logger.warning("Could not complete scan event %s: %s", scan_id, exc)
        db.session.rollback()
