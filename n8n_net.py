"""
Network helpers shared by URL imports and webhook calls.

Freshly started tunnels (trycloudflare and friends) can take a few seconds
before their hostname resolves, so downloads wait for DNS first and retry on
a fixed backoff schedule.
"""

import json
import logging
import socket
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlparse

import httpx

from n8n_errors import SourceUnavailable

logger = logging.getLogger(__name__)

RETRY_DELAYS_MS = (0, 250, 600, 1000, 1600, 2400, 3500, 5000)
DNS_TIMEOUT = 6.0
DNS_INTERVAL = 0.25
DNS_RETRY_TIMEOUT = 2.5
DOWNLOAD_TIMEOUT = 9.0

Resolver = Callable[[str], Any]


def resolve_host(host: str) -> Any:
    return socket.getaddrinfo(host, None)


def is_url(value: str) -> bool:
    try:
        parsed = urlparse(str(value).strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_name_resolution_error(error: BaseException) -> bool:
    """True when ``error`` (or its cause chain) is a DNS lookup failure."""
    seen = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        if isinstance(current, socket.gaierror):
            return True
        text = str(current).lower()
        if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo failed" in text:
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


def wait_for_dns(
    host: str,
    timeout: float = DNS_TIMEOUT,
    interval: float = DNS_INTERVAL,
    resolver: Resolver = resolve_host,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll until ``host`` resolves or ``timeout`` seconds pass."""
    start = clock()
    while True:
        try:
            resolver(host)
            return True
        except OSError:
            pass
        if clock() - start >= timeout:
            logger.info("DNS for %s still not resolvable after %.1fs", host, timeout)
            return False
        sleep(interval)


def download_json(
    url: str,
    http: httpx.Client | None = None,
    delays_ms: tuple[int, ...] = RETRY_DELAYS_MS,
    resolver: Resolver = resolve_host,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Any:
    """
    GET ``url`` and parse it as JSON, retrying on the fixed backoff schedule.

    Any 2xx is a success; any other status or transport error is retried.
    A name-resolution failure adds a short extra DNS wait before the next try.

    Raises:
        SourceUnavailable: the schedule was exhausted; carries the last error.
    """
    host = urlparse(url).hostname or ""
    wait_for_dns(host, resolver=resolver, sleep=sleep, clock=clock)

    owns_client = http is None
    http = http or httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
    last_error: BaseException | str | None = None
    try:
        for attempt, delay in enumerate(delays_ms, start=1):
            if delay:
                sleep(delay / 1000)
            try:
                response = http.get(url)
            except httpx.RequestError as e:
                last_error = e
                logger.info("Download attempt %d/%d of %s failed: %s", attempt, len(delays_ms), url, e)
                if is_name_resolution_error(e):
                    wait_for_dns(host, timeout=DNS_RETRY_TIMEOUT, resolver=resolver, sleep=sleep, clock=clock)
                continue

            if response.is_success:
                try:
                    return json.loads(response.text)
                except ValueError as e:
                    raise SourceUnavailable(url, attempt, f"invalid JSON: {e}") from e

            last_error = f"HTTP {response.status_code}"
            logger.info("Download attempt %d/%d of %s returned %s", attempt, len(delays_ms), url, last_error)
    finally:
        if owns_client:
            http.close()

    raise SourceUnavailable(url, len(delays_ms), last_error or "no attempts made")
