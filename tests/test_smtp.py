"""
Unit tests for mailhealth/checker/smtp.py

The SMTP check only performs DNS lookups; there is nothing to connect to.
"""

from __future__ import annotations

from unittest.mock import patch

from mailhealth.checker.smtp import check_smtp

_PATCH_TARGET = "mailhealth.checker.smtp.query_dns"


def _dns_ok(*records: str) -> dict:
    return {"success": True, "records": list(records), "error_type": None, "error_message": None}


def _dns_fail(error_type: str = "NXDOMAIN", message: str = "Not found") -> dict:
    return {"success": False, "records": [], "error_type": error_type, "error_message": message}


def _table(mx: dict, a_records: dict[str, str]):
    def _query(name, rdtype, settings=None):
        if rdtype == "MX":
            return mx
        if name in a_records:
            return _dns_ok(a_records[name])
        return _dns_fail()

    return _query


def test_two_resolving_servers_pass():
    mx = _dns_ok("10 mx1.example.com.", "20 mx2.example.com.")
    with patch(_PATCH_TARGET, side_effect=_table(mx, {"mx1.example.com": "192.0.2.1", "mx2.example.com": "192.0.2.2"})):
        result = check_smtp("example.com")

    assert result.status == "pass"
    assert result.score == 100
    assert result.details["primary_server"] == "mx1.example.com"
    assert result.details["has_redundancy"] is True
    assert result.details["servers"][1]["ip"] == "192.0.2.2"


def test_single_server_warns():
    mx = _dns_ok("10 mx1.example.com.")
    with patch(_PATCH_TARGET, side_effect=_table(mx, {"mx1.example.com": "192.0.2.1"})):
        result = check_smtp("example.com")

    assert result.status == "warn"
    assert result.score == 90
    assert result.details["has_redundancy"] is False


def test_only_first_three_servers_resolved():
    mx = _dns_ok(*(f"{10 * i} mx{i}.example.com." for i in range(1, 6)))
    addrs = {f"mx{i}.example.com": f"192.0.2.{i}" for i in range(1, 6)}
    with patch(_PATCH_TARGET, side_effect=_table(mx, addrs)) as mock_query:
        result = check_smtp("example.com")

    ips = [s["ip"] for s in result.details["servers"]]
    assert ips == ["192.0.2.1", "192.0.2.2", "192.0.2.3", "Not checked", "Not checked"]
    a_queries = [c.args[0] for c in mock_query.call_args_list if c.args[1] == "A"]
    assert len(a_queries) == 3
    assert result.details["server_count"] == 5


def test_unresolved_server_penalised():
    mx = _dns_ok("10 mx1.example.com.", "20 gone.example.com.")
    with patch(_PATCH_TARGET, side_effect=_table(mx, {"mx1.example.com": "192.0.2.1"})):
        result = check_smtp("example.com")

    assert result.status == "warn"
    assert result.score == 90
    assert result.details["servers"][1]["ip"] == "Could not resolve"


def test_no_mx_fails():
    with patch(_PATCH_TARGET, return_value=_dns_fail("NO_ANSWER", "No MX records found for example.com")):
        result = check_smtp("example.com")

    assert result.status == "fail"
    assert result.score == 0
    assert result.details["server_count"] == 0
