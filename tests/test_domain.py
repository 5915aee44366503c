"""
Unit tests for mailhealth/utils/domain.py and mailhealth/utils/identity.py
"""

from __future__ import annotations

import pytest

from mailhealth.errors import DenylistError, ValidationError
from mailhealth.utils.domain import (
    BLOCKED_DOMAIN_MESSAGE,
    is_domain_blocked,
    is_valid_domain,
    normalize_domain,
    validate_domain,
)
from mailhealth.utils.identity import TIER_LIMITS, CallerContext, caller_from_request


# ---------------------------------------------------------------------------
# Syntax
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "domain",
    ["example.com", "mail.example.co.uk", "xn--bcher-kva.example", "a-b.example.org", "EXAMPLE.COM."],
)
def test_valid_domains(domain):
    assert is_valid_domain(domain)


@pytest.mark.parametrize(
    "domain",
    [
        "",
        "localhost",
        "example",
        "-bad.example.com",
        "bad-.example.com",
        "exa_mple.com",
        "example.c0m",
        "192.168.0.1",
        "a." * 130 + "com",
        "https://example.com",
    ],
)
def test_invalid_domains(domain):
    assert not is_valid_domain(domain)


def test_normalize_domain():
    assert normalize_domain("  Example.COM. ") == "example.com"
    assert normalize_domain(None) == ""


# ---------------------------------------------------------------------------
# Denylist
# ---------------------------------------------------------------------------


class TestDenylist:
    @pytest.mark.parametrize(
        "domain, patterns",
        [
            ("blocked.example", ["blocked.example"]),
            ("mail.blocked.example", ["*.blocked.example"]),
            ("acme.org", ["acme.*"]),
            ("a.mid.example", ["*.mid.*"]),
            ("Agency.GOV", ["*.gov"]),
        ],
    )
    def test_matches(self, domain, patterns):
        assert is_domain_blocked(domain, patterns)

    def test_wildcard_requires_label(self):
        assert not is_domain_blocked("blocked.example", ["*.blocked.example"])

    def test_no_partial_match(self):
        assert not is_domain_blocked("notblocked.example", ["blocked.example"])

    def test_blank_patterns_ignored(self):
        assert not is_domain_blocked("example.com", ["", "  "])


# ---------------------------------------------------------------------------
# validate_domain
# ---------------------------------------------------------------------------


class TestValidateDomain:
    def test_returns_normalized(self):
        assert validate_domain(" Example.com ") == "example.com"

    def test_missing(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_domain("   ")
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Domain is required"

    def test_malformed(self):
        with pytest.raises(ValidationError, match="Invalid domain format"):
            validate_domain("not a domain")

    def test_blocked_message_is_generic(self):
        with pytest.raises(DenylistError) as exc_info:
            validate_domain("x.agency.gov", ["*.gov"])
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == BLOCKED_DOMAIN_MESSAGE
        assert "gov" not in exc_info.value.message


# ---------------------------------------------------------------------------
# Caller identity
# ---------------------------------------------------------------------------


class TestCallerContext:
    def test_anonymous_keyed_by_ip(self):
        caller = CallerContext(ip="203.0.113.9")
        assert caller.is_anonymous
        assert caller.auth_status == "anonymous"
        assert caller.identity_key == "ip:203.0.113.9"
        assert caller.limits == TIER_LIMITS["free"]
        assert caller.cache_max_age == 300

    def test_authenticated_tier_limits(self):
        caller = CallerContext(ip="203.0.113.9", user_id="u1", tier="scale")
        assert caller.identity_key == "user:u1"
        assert caller.limits.hourly == 20
        assert caller.limits.daily == 1200
        assert caller.cache_max_age == 300

    def test_enterprise_never_uses_cache(self):
        assert CallerContext(ip="x", user_id="u1", tier="enterprise").cache_max_age == 0

    def test_from_headers(self, app):
        headers = {
            "X-User-Id": "42",
            "X-User-Email": "ops@example.com",
            "X-User-Tier": "Growth",
            "X-Forwarded-For": "198.51.100.4, 10.0.0.1",
        }
        with app.test_request_context(
            "/api/v1/scan", headers=headers, environ_base={"REMOTE_ADDR": "203.0.113.7"}
        ):
            from flask import request

            caller = caller_from_request(request)

        assert caller.user_id == "42"
        assert caller.email == "ops@example.com"
        assert caller.tier == "growth"
        # the raw forwarded header is never trusted
        assert caller.ip == "203.0.113.7"

    def test_unknown_tier_falls_back_to_free(self, app):
        with app.test_request_context("/", headers={"X-User-Id": "7", "X-User-Tier": "platinum"}):
            from flask import request

            caller = caller_from_request(request)

        assert caller.tier == "free"

    def test_tier_header_ignored_without_user(self, app):
        with app.test_request_context("/", headers={"X-User-Tier": "enterprise"}):
            from flask import request

            caller = caller_from_request(request)

        assert caller.is_anonymous
        assert caller.tier == "free"
