"""
Shared pytest fixtures for the mail health scanner test suite.

All fixtures use an in-memory SQLite database so tests are fully
isolated and require no external services.  Check runners are exercised
with query_dns / fetch patched, so no real network activity occurs.
"""

from __future__ import annotations

import pytest

from mailhealth import create_app
from mailhealth import db as _db
from mailhealth.checker.settings import ScanSettings


# ---------------------------------------------------------------------------
# Test configuration
# ---------------------------------------------------------------------------


class TestConfig:
    """Minimal Flask config for automated testing."""

    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = "test-secret-key-not-for-production"
    BLOCKED_DOMAINS = ["blocked.example", "*.gov"]
    RBL_API_URL = "https://rbl.test/api"
    # Fire every wave immediately so scans do not sleep in tests.
    WAVE2_DELAY = 0.0
    WAVE3_DELAY = 0.0
    ANON_DAILY_SCANS = 3


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="function")
def app():
    """Create a Flask application instance backed by an in-memory database.

    A fresh database is created for every test function and torn down
    after the function completes, guaranteeing full isolation.
    """
    flask_app = create_app(TestConfig)

    with flask_app.app_context():
        _db.create_all()

        yield flask_app

        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope="function")
def client(app):
    """Return a Flask test client (anonymous caller)."""
    return app.test_client()


@pytest.fixture(scope="function")
def db(app):
    """Yield the SQLAlchemy db object within an active application context."""
    with app.app_context():
        yield _db


@pytest.fixture
def settings():
    """ScanSettings with short timeouts; every lookup is patched anyway."""
    return ScanSettings(dns_timeout=1.0, dns_retries=1, http_timeout=1.0, mta_sts_timeout=1.0,
                        rbl_api_url="https://rbl.test/api", max_workers=4)




class ProxiedTestConfig(TestConfig):
    """TestConfig for a deployment behind one appending reverse proxy."""

    PROXY_FIX_X_FOR = 1


@pytest.fixture(scope="function")
def proxied_client():
    """Test client for an app that trusts one X-Forwarded-For hop."""
    flask_app = create_app(ProxiedTestConfig)

    with flask_app.app_context():
        _db.create_all()

        yield flask_app.test_client()

        _db.session.remove()
        _db.drop_all()
