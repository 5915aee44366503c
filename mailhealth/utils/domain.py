"""
Domain validation and denylist matching.

Both run before any network call.  Denylist patterns are glob-style
(``example.com``, ``*.example.com``, ``example.*``, ``*.mid.*``) and match
case-insensitively against the whole domain.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Iterable

from mailhealth.errors import DenylistError, ValidationError

logger = logging.getLogger(__name__)

BLOCKED_DOMAIN_MESSAGE = "Unable to complete scan for this domain"

_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^[a-z]{2,63}$")
_MAX_DOMAIN_LENGTH = 253


def normalize_domain(raw: str | None) -> str:
    """Trim, lower-case and drop a trailing dot."""
    return (raw or "").strip().lower().rstrip(".")


def is_valid_domain(domain: str) -> bool:
    """True for hostnames with at least two labels and an alphabetic TLD.

    Labels are 1-63 characters of letters, digits and hyphens and may not
    start or end with a hyphen.
    """
    domain = normalize_domain(domain)
    if not domain or len(domain) > _MAX_DOMAIN_LENGTH:
        return False
    labels = domain.split(".")
    if len(labels) < 2:
        return False
    if not _TLD_RE.match(labels[-1]):
        return False
    return all(_LABEL_RE.match(label) for label in labels)


@lru_cache(maxsize=256)
def _pattern_to_regex(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern.strip().lower()).replace(r"\*", ".*")
    return re.compile(f"^{escaped}$")


def is_domain_blocked(domain: str, patterns: Iterable[str]) -> bool:
    """True when *domain* matches any denylist glob in *patterns*."""
    domain = normalize_domain(domain)
    for pattern in patterns:
        if pattern.strip() and _pattern_to_regex(pattern).match(domain):
            logger.info("Domain %s matched denylist pattern %r", domain, pattern)
            return True
    return False


def validate_domain(raw: str | None, blocked_patterns: Iterable[str] = ()) -> str:
    """Normalize *raw* and enforce syntax and the denylist.

    Returns:
        The normalized domain.

    Raises:
        ValidationError: Missing or malformed domain.
        DenylistError: Domain matches a denylist pattern.
    """
    domain = normalize_domain(raw)
    if not domain:
        raise ValidationError("Domain is required")
    if not is_valid_domain(domain):
        raise ValidationError("Invalid domain format")
    if is_domain_blocked(domain, blocked_patterns):
        raise DenylistError(BLOCKED_DOMAIN_MESSAGE)
    return domain
