"""
Thin HTTPS fetch wrapper used by the policy, BIMI, blacklist and
compliance checks.

Every request carries an explicit timeout and a fixed User-Agent.  Only
``requests.RequestException`` escapes; callers turn it into a verdict.
"""

from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "mailhealth-scanner/1.0"


def fetch(
    url: str,
    timeout: float,
    *,
    accept: str | None = None,
    params: dict[str, str] | None = None,
) -> requests.Response:
    """GET *url* following redirects and return the response.

    Args:
        url: Absolute http(s) URL.
        timeout: Connect and read timeout in seconds.
        accept: Optional Accept header value.
        params: Optional query-string parameters.

    Returns:
        The requests.Response; status codes are not checked.

    Raises:
        requests.RequestException: On DNS, connection, TLS or timeout errors.
    """
    headers = {"User-Agent": USER_AGENT}
    if accept:
        headers["Accept"] = accept

    resp = requests.get(
        url, params=params, headers=headers, timeout=timeout, allow_redirects=True,
    )
    logger.debug("GET %s -> %d", resp.url, resp.status_code)
    return resp
