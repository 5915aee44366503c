"""
Unit tests for mailhealth/checker/bimi.py

DNS lookups and HTTPS fetches (logo, VMC) are mocked.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import requests

from mailhealth.checker.bimi import (
    check_bimi_all,
    check_bimi_record,
    check_bimi_vmc,
    get_bimi_record,
)

_DNS_PATCH = "mailhealth.checker.bimi.query_dns"
_FETCH_PATCH = "mailhealth.checker.bimi.fetch"

_LOGO = "https://example.com/logo.svg"
_VMC = "https://example.com/vmc.pem"


def _dns_ok(*records: str) -> dict:
    return {"success": True, "records": list(records), "error_type": None, "error_message": None}


def _dns_fail(error_type: str = "NXDOMAIN") -> dict:
    return {"success": False, "records": [], "error_type": error_type, "error_message": "Not found"}


def _response(status_code: int = 200, content_type: str = "", text: str = "") -> MagicMock:
    resp = MagicMock()
    resp.status_code = status_code
    resp.headers = {"Content-Type": content_type}
    resp.text = text
    return resp


def _fetch_table(responses: dict[str, MagicMock]):
    def _fetch(url, timeout, **kwargs):
        return responses[url]

    return _fetch


# ---------------------------------------------------------------------------
# Record lookup
# ---------------------------------------------------------------------------


def test_get_bimi_record_parses_tags():
    with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")) as mock_query:
        record = get_bimi_record("example.com")

    assert record["v"] == "BIMI1"
    assert record["l"] == _LOGO
    assert record["a"] == _VMC
    assert mock_query.call_args.args[0] == "default._bimi.example.com"


def test_get_bimi_record_absent():
    with patch(_DNS_PATCH, return_value=_dns_fail()):
        assert get_bimi_record("example.com") is None


# ---------------------------------------------------------------------------
# bimi_record
# ---------------------------------------------------------------------------


class TestBimiRecord:
    def test_no_record_is_warning_not_failure(self):
        with patch(_DNS_PATCH, return_value=_dns_fail()):
            result = check_bimi_record("example.com")

        assert result.status == "warn"
        assert result.score == 0
        assert result.details["has_record"] is False

    def test_valid_record_with_svg_logo(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a=")), \
             patch(_FETCH_PATCH, return_value=_response(200, "image/svg+xml")):
            result = check_bimi_record("example.com")

        assert result.status == "pass"
        assert result.score == 100
        assert result.details["logo_url"] == _LOGO
        assert result.details["has_vmc"] is False
        assert result.recommendations == ["BIMI record is properly configured"]

    def test_logo_wrong_content_type(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}")), \
             patch(_FETCH_PATCH, return_value=_response(200, "image/png")):
            result = check_bimi_record("example.com")

        assert result.status == "warn"
        assert result.score == 90

    def test_logo_unreachable(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}")), \
             patch(_FETCH_PATCH, side_effect=requests.ConnectionError("refused")):
            result = check_bimi_record("example.com")

        assert result.score == 80
        assert any("HTTP 0" in issue for issue in result.recommendations)

    def test_bad_version_and_missing_logo(self):
        with patch(_DNS_PATCH, return_value=_dns_ok("v=BIMI2;")):
            result = check_bimi_record("example.com")

        assert result.status == "fail"
        assert result.score == 30

    def test_prefetched_record_skips_dns(self):
        record = {"v": "BIMI1", "l": _LOGO, "a": "", "raw": f"v=BIMI1; l={_LOGO}"}
        with patch(_DNS_PATCH) as mock_query, \
             patch(_FETCH_PATCH, return_value=_response(200, "image/svg+xml")):
            result = check_bimi_record("example.com", prefetched=record)

        mock_query.assert_not_called()
        assert result.status == "pass"

    def test_prefetched_none_means_absent(self):
        with patch(_DNS_PATCH) as mock_query:
            result = check_bimi_record("example.com", prefetched=None)

        mock_query.assert_not_called()
        assert result.details["has_record"] is False


# ---------------------------------------------------------------------------
# bimi_vmc
# ---------------------------------------------------------------------------


class TestBimiVmc:
    def test_no_record(self):
        with patch(_DNS_PATCH, return_value=_dns_fail()):
            result = check_bimi_vmc("example.com")

        assert result.status == "warn"
        assert result.score == 0

    def test_record_without_authority(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a=")):
            result = check_bimi_vmc("example.com")

        assert result.status == "warn"
        assert result.score == 50

    def test_pem_certificate_passes(self):
        pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")), \
             patch(_FETCH_PATCH, return_value=_response(200, "text/plain", pem)):
            result = check_bimi_vmc("example.com")

        assert result.status == "pass"
        assert result.score == 100
        assert result.details["vmc_is_pem"] is True
        assert result.recommendations == ["VMC certificate is properly configured"]

    def test_certificate_content_type_accepted_without_marker(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")), \
             patch(_FETCH_PATCH, return_value=_response(200, "application/x-pem-file", "binary")):
            result = check_bimi_vmc("example.com")

        assert result.status == "pass"

    def test_html_page_is_not_a_certificate(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")), \
             patch(_FETCH_PATCH, return_value=_response(404, "text/html", "<html></html>")):
            result = check_bimi_vmc("example.com")

        assert result.status == "fail"
        assert result.score == 40
        assert len(result.recommendations) == 2

    def test_fetch_error_fails(self):
        with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")), \
             patch(_FETCH_PATCH, side_effect=requests.Timeout("slow")):
            result = check_bimi_vmc("example.com")

        assert result.status == "fail"
        assert result.score == 30
        assert result.error == "slow"


# ---------------------------------------------------------------------------
# Shared lookup
# ---------------------------------------------------------------------------


def test_check_bimi_all_queries_dns_once():
    pem = "-----BEGIN CERTIFICATE-----\n"
    responses = {
        _LOGO: _response(200, "image/svg+xml"),
        _VMC: _response(200, "application/pkix-cert", pem),
    }
    with patch(_DNS_PATCH, return_value=_dns_ok(f"v=BIMI1; l={_LOGO}; a={_VMC}")) as mock_query, \
         patch(_FETCH_PATCH, side_effect=_fetch_table(responses)):
        record, vmc = check_bimi_all("example.com")

    assert mock_query.call_count == 1
    assert record.status == "pass"
    assert vmc.status == "pass"
