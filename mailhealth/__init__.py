"""
Flask application factory for the mail health scanner.

Creates and configures the Flask application, registers the API blueprint,
and initialises the SQLAlchemy extension used by the quota guard, the
result cache and the scan analytics.
"""

from __future__ import annotations

import logging
import sys

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from mailhealth.config import Config

# ---------------------------------------------------------------------------
# Extension instances (created here, initialised in create_app)
# ---------------------------------------------------------------------------
db: SQLAlchemy = SQLAlchemy()


def _configure_logging(debug: bool) -> None:
    """Configure the root logger.

    Logging goes to stdout so WSGI hosts capture it without file handlers.

    Format: timestamp  level  logger-name  message

    Args:
        debug: When True, sets the root level to DEBUG.  Otherwise INFO.
    """
    level = logging.DEBUG if debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)-8s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%SZ",
        )
    )

    root_logger = logging.getLogger()
    # create_app() runs once per test, so guard against duplicate handlers.
    if not root_logger.handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(level)


def create_app(config_object: object = Config) -> Flask:
    """Application factory.

    Args:
        config_object: Configuration class or object to load settings from.

    Returns:
        A fully configured Flask application instance.
    """
    app = Flask(__name__)
    app.config.from_object(config_object)

    _configure_logging(debug=app.debug)

    # Only the hops appended by our own proxies are trusted for remote_addr.
    proxy_hops = int(app.config.get("PROXY_FIX_X_FOR", 0))
    if proxy_hops > 0:
        from werkzeug.middleware.proxy_fix import ProxyFix

        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxy_hops)  # type: ignore[method-assign]

    # ------------------------------------------------------------------
    # Initialise extensions
    # ------------------------------------------------------------------
    db.init_app(app)

    # WAL lets the scan threads read the cache while a request commits
    # quota counters.
    with app.app_context():
        from sqlalchemy import event

        if db.engine.dialect.name == "sqlite":

            @event.listens_for(db.engine, "connect")
            def _set_sqlite_pragma(dbapi_conn, connection_record):  # noqa: ARG001
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA busy_timeout=30000")
                cursor.close()

    # ------------------------------------------------------------------
    # Register blueprints
    # ------------------------------------------------------------------
    from mailhealth.api import bp as api_bp

    app.register_blueprint(api_bp)

    # ------------------------------------------------------------------
    # Security headers
    # ------------------------------------------------------------------
    from flask import Response

    @app.after_request
    def set_security_headers(response: Response) -> Response:
        """Attach security-related HTTP response headers.

        The API only ever serves JSON, so the policy forbids every
        resource origin and all framing.
        """
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    return app
