"""
Command-line scanner: run a full mail health scan for one domain.

The scan uses the same preflight (syntax and denylist) and three-wave
engine as the HTTP API, but skips the quota guard.  Results are cached
and an analytics event is recorded in the configured database, so run
``python init_db.py`` first.

USAGE
=====
  # Human-readable summary
  python scan_domain.py --domain example.com

  # Probe extra DKIM selectors
  python scan_domain.py --domain example.com --selector mta1 --selector mta2

  # Full JSON report on stdout
  python scan_domain.py --domain example.com --json

  # Enable debug-level logging
  python scan_domain.py --domain example.com --verbose

EXIT CODES
==========
  0 - Scan completed (even if individual checks reported issues)
  1 - Scan refused (invalid or blocked domain)
  2 - Fatal error (e.g. unable to create app context, database unreachable)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time


# ---------------------------------------------------------------------------
# Argument parsing (done before app import so --help works without Flask)
# ---------------------------------------------------------------------------


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a full email authentication health scan for a domain.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--domain",
        metavar="HOSTNAME",
        required=True,
        help="Domain to scan.",
    )
    parser.add_argument(
        "--selector",
        metavar="NAME",
        action="append",
        default=[],
        help="Additional DKIM selector to probe (repeatable).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Print the full report as JSON instead of a summary.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        default=False,
        help="Enable DEBUG-level logging output.",
    )
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Logging setup (before Flask to capture early errors)
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool) -> logging.Logger:
    """Configure the root logger for the script.

    Logs go to stderr so that ``--json`` output on stdout stays parseable.

    Args:
        verbose: If True, set level to DEBUG; otherwise INFO.

    Returns:
        A logger instance named after this module.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        stream=sys.stderr,
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
    )
    return logging.getLogger(__name__)


def _print_summary(report_dict: dict) -> None:
    print(f"Domain:          {report_dict['domain']}")
    print(f"Scan id:         {report_dict['scan_id']}")
    print(f"Config score:    {report_dict['config_score']}")
    print(f"Final score:     {report_dict['final_score']}")
    print(f"Reputation tier: {report_dict['reputation_tier']}")
    print()
    for name, check in report_dict["checks"].items():
        print(f"  {name:<12} {check['status']:<5} {check['score']:>3}")
    if report_dict["issues"]:
        print()
        print("Issues:")
        for issue in report_dict["issues"]:
            print(f"  [{issue['severity']}] {issue['title']}")


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Execute a single-domain scan.

    Returns:
        Integer exit code: 0 for success, 1 for a refused scan, 2 for a
        fatal error.
    """
    args = _parse_args(argv)
    logger = _configure_logging(args.verbose)

    try:
        from mailhealth import create_app

        flask_app = create_app()
    except Exception:
        logger.exception("FATAL: Failed to create Flask application.")
        return 2

    with flask_app.app_context():
        from mailhealth.errors import ScanRefused
        from mailhealth.scanner import preflight, scan
        from mailhealth.utils.identity import CallerContext

        caller = CallerContext(ip="cli")
        t0 = time.monotonic()
        try:
            admitted = preflight(args.domain, caller, flask_app.config, enforce_quota=False)
            report = scan(admitted, flask_app.config, selectors=args.selector or None)
        except ScanRefused as exc:
            logger.error("Scan refused for '%s': %s", args.domain, exc.message)
            return 1
        except Exception:
            logger.exception("Scan failed for domain '%s'.", args.domain)
            return 2

        logger.info(
            "DONE  %s  config=%s  final=%s  tier=%s  elapsed=%.1fs",
            report.domain,
            report.config_score,
            report.final_score,
            report.reputation_tier,
            time.monotonic() - t0,
        )

    payload = report.to_dict()
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        _print_summary(payload)
    return 0


# ---------------------------------------------------------------------------
# Script entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    sys.exit(main())
