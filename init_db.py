"""
Database initialisation script for the mail health scanner.

Creates all tables and, on SQLite, enables WAL mode for better concurrent
read performance.  Optionally purges expired cache rows.

Safe to run multiple times (idempotent).

Usage:
    python init_db.py
    python init_db.py --purge-cache
"""

from __future__ import annotations

import argparse
import sys

from sqlalchemy import text

from mailhealth import create_app, db


def init_database(purge_cache: bool = False) -> None:
    """Initialise the database within the Flask application context."""
    app = create_app()

    with app.app_context():
        # ------------------------------------------------------------------
        # Create all tables (safe to call on existing databases)
        # ------------------------------------------------------------------
        db.create_all()
        print("[init_db] Tables created / verified.")

        # ------------------------------------------------------------------
        # Enable WAL mode for better SQLite concurrency
        # ------------------------------------------------------------------
        if db.engine.dialect.name == "sqlite":
            with db.engine.connect() as conn:
                mode = conn.execute(text("PRAGMA journal_mode=WAL")).scalar()
            print(f"[init_db] SQLite journal_mode = {mode}")

        if purge_cache:
            from mailhealth.checker.cache import purge_expired

            removed = purge_expired()
            print(f"[init_db] Purged {removed} expired cache rows.")

        print("[init_db] Initialisation complete.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the scanner database tables.")
    parser.add_argument(
        "--purge-cache",
        action="store_true",
        default=False,
        help="Delete expired cached check results after creating tables.",
    )
    args = parser.parse_args()
    try:
        init_database(purge_cache=args.purge_cache)
    except Exception as exc:  # pylint: disable=broad-except
        print(f"[init_db] ERROR: {exc}", file=sys.stderr)
        sys.exit(1)
