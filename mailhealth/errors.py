"""
Terminal preflight errors.

These are the only failures that end a scan request without a report.
Everything that goes wrong inside a check is converted into a
CheckResult instead of being raised.
"""

from __future__ import annotations


class ScanRefused(Exception):
    """Base class for errors that stop a scan before any check runs."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(ScanRefused):
    """The domain is missing or not a syntactically valid hostname."""

    status_code = 400


class DenylistError(ScanRefused):
    """The domain matches the denylist.  The message never says why."""

    status_code = 403


class QuotaExceeded(ScanRefused):
    """The caller ran out of scans for the current window."""

    status_code = 429

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {"error": self.message, "retry_after": self.retry_after}
