"""
Relay fetching: request a target URL through an ordered list of relay proxies.

The video platform rejects direct cross-origin and hotlinked requests, so every
platform call goes through third-party passthrough relays. Relays are tried
strictly in order; the first response the caller's predicate accepts wins.
"""

import logging
from typing import Callable
from urllib.parse import quote, urlparse

import requests

from vidscript.core.constants import (
    BROWSER_USER_AGENT, BILIBILI_REFERER,
    RELAY_CONNECT_TIMEOUT_SEC, RELAY_READ_TIMEOUT_SEC,
)
from vidscript.core.error_codes import AllRelaysExhausted

logger = logging.getLogger(__name__)

AcceptPredicate = Callable[[requests.Response], bool]

DEFAULT_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Referer": BILIBILI_REFERER,
}


def build_relay_url(template: str, target_url: str) -> str:
    """
    Substitute the target into a relay template.
    {url} receives the URL-encoded target, {raw_url} the target verbatim.
    """
    return (template
            .replace("{url}", quote(target_url, safe=""))
            .replace("{raw_url}", target_url))


def _relay_host(relay_url: str) -> str:
    return urlparse(relay_url).netloc or relay_url[:40]


def fetch_through_relays(target_url: str, relays: list[str],
                         accept: AcceptPredicate,
                         session: requests.Session | None = None,
                         method: str = "GET",
                         headers: dict | None = None,
                         timeout: tuple | float | None = None) -> requests.Response:
    """
    Request target_url through each relay in order until one response is accepted.

    A relay is skipped when the request raises, or when accept() returns False
    or fails to parse the body (ValueError/KeyError/TypeError).
    Raises AllRelaysExhausted after every relay has been tried.
    """
    if session is None:
        with requests.Session() as owned:
            return fetch_through_relays(target_url, relays, accept, owned,
                                        method, headers, timeout)

    http = session
    request_headers = dict(DEFAULT_HEADERS)
    if headers:
        request_headers.update(headers)
    if timeout is None:
        timeout = (RELAY_CONNECT_TIMEOUT_SEC, RELAY_READ_TIMEOUT_SEC)

    attempts = 0
    for template in relays:
        relay_url = build_relay_url(template, target_url)
        host = _relay_host(relay_url)
        attempts += 1

        try:
            resp = http.request(method, relay_url, headers=request_headers, timeout=timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("Relay %s failed (attempt %d/%d): %s",
                           host, attempts, len(relays), type(e).__name__)
            continue

        try:
            accepted = accept(resp)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Relay %s returned an unparsable body (attempt %d/%d): %s",
                           host, attempts, len(relays), e)
            accepted = False

        if accepted:
            logger.info("Relay %s accepted (attempt %d/%d)", host, attempts, len(relays))
            return resp

        logger.warning("Relay %s response rejected (status=%s, %d bytes)",
                       host, resp.status_code, len(resp.content or b""))

    raise AllRelaysExhausted(
        f"All {attempts} relays failed for {_relay_host(target_url)}",
        attempts=attempts,
    )


# ── Accept predicates ─────────────────────────────────────────────────

def accept_ok_status(resp: requests.Response) -> bool:
    return 200 <= resp.status_code < 300


def accept_min_size(min_bytes: int) -> AcceptPredicate:
    """Accept 2xx responses whose body is larger than min_bytes."""
    def _accept(resp: requests.Response) -> bool:
        return accept_ok_status(resp) and len(resp.content or b"") > min_bytes
    return _accept


def accept_json_code(expected: int = 0) -> AcceptPredicate:
    """Accept 2xx JSON responses whose numeric 'code' field equals expected."""
    def _accept(resp: requests.Response) -> bool:
        if not accept_ok_status(resp):
            return False
        data = resp.json()
        return isinstance(data, dict) and data.get("code") == expected
    return _accept
