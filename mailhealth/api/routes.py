"""
API blueprint routes.

JSON endpoints for full scans, single checks, the scan preflight and the
embeddable widget snapshot, plus an unauthenticated health probe.

Terminal refusals map to 400 (invalid domain), 403 (denylist) and 429
(quota, with a Retry-After header).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app, jsonify, request

from mailhealth.api import bp
from mailhealth.checker.engine import run_check_cached, run_widget_scan
from mailhealth.checker.settings import ScanSettings
from mailhealth.checker.types import CheckType
from mailhealth.errors import QuotaExceeded, ScanRefused, ValidationError
from mailhealth.scanner import preflight, scan
from mailhealth.utils.domain import validate_domain
from mailhealth.utils.identity import caller_from_request

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request_args() -> dict:
    """Merge query-string and JSON body parameters (body wins)."""
    args = dict(request.args)
    if request.is_json:
        body = request.get_json(silent=True) or {}
        if isinstance(body, dict):
            args.update(body)
    return args


def _selectors(args: dict) -> list[str] | None:
    raw = args.get("selectors")
    if raw is None:
        raw = request.args.getlist("selector") or None
    if isinstance(raw, str):
        raw = raw.split(",")
    if not raw:
        return None
    return [str(s).strip() for s in raw if str(s).strip()]


@bp.errorhandler(ScanRefused)
def _handle_refusal(exc: ScanRefused):
    response = jsonify(exc.to_dict())
    response.status_code = exc.status_code
    if isinstance(exc, QuotaExceeded):
        response.headers["Retry-After"] = str(exc.retry_after)
    return response


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@bp.route("/health")
def health():
    """Health-check endpoint."""
    return jsonify(
        {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "mailhealth-scanner",
        }
    )


@bp.route("/scan/preflight", methods=["POST"])
def scan_preflight():
    """Validate the domain and consume one scan from the caller's quota."""
    args = _request_args()
    admitted = preflight(args.get("domain"), caller_from_request(request), current_app.config)
    return jsonify({"allowed": True, "scan_id": admitted.scan_id, "domain": admitted.domain})


@bp.route("/scan", methods=["GET", "POST"])
def scan_domain():
    """Run preflight and the full three-wave scan, returning the report."""
    args = _request_args()
    admitted = preflight(args.get("domain"), caller_from_request(request), current_app.config)
    report = scan(admitted, current_app.config, selectors=_selectors(args))
    return jsonify(report.to_dict())


@bp.route("/scan/<check>", methods=["GET"])
def scan_single_check(check: str):
    """Run one check through the result cache.

    Quota is not consumed here: single checks are the per-card refreshes
    of a scan that already passed preflight.
    """
    try:
        check_type = CheckType(check)
    except ValueError:
        return jsonify({"error": f"Unknown check: {check}"}), 404

    args = _request_args()
    domain = validate_domain(args.get("domain"), current_app.config.get("BLOCKED_DOMAINS") or ())
    caller = caller_from_request(request)

    result, cached = run_check_cached(
        check_type,
        domain,
        ScanSettings.from_config(current_app.config),
        selectors=_selectors(args),
        max_age=caller.cache_max_age,
    )
    payload = result.to_dict()
    payload.update({"check": check_type.value, "domain": domain, "cached": cached})
    return jsonify(payload)


@bp.route("/widget/scan", methods=["GET"])
def widget_scan():
    """DNS-only SPF/DKIM/DMARC snapshot; never cached."""
    domain = request.args.get("domain")
    if not domain:
        raise ValidationError("Domain parameter is required")
    domain = validate_domain(domain, current_app.config.get("BLOCKED_DOMAINS") or ())
    return jsonify(run_widget_scan(domain, ScanSettings.from_config(current_app.config)))
