"""HTTP utilities built on httpx.

Intended use:
- One place for timeouts, User-Agent, TLS policy and connection limits.
- A retry wrapper for transient failures (429/5xx, transport errors).

Notes:
- The sync itself does no retry or backoff. The default RetryConfig performs a
  single attempt and convergence after a failure comes from re-running the sweep.
- Retries with backoff and jitter exist only for operators who opt in through
  `sync.max_retries` > 1 in the configuration.
"""

from __future__ import annotations

import logging
import os
import random
import time
from collections.abc import Iterable, Mapping, MutableMapping
from dataclasses import dataclass

import httpx

from .. import __version__

log = logging.getLogger(__name__)

__all__ = [
    "RetryConfig",
    "create_client",
    "request_with_retries",
]


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 1  # total attempts
    backoff_initial_sec: float = 1.0
    backoff_factor: float = 2.0
    jitter_frac: float = 0.2  # +/- 20%
    status_forcelist: tuple[int, ...] = (429, 500, 502, 503, 504)
    methods: tuple[str, ...] = ("GET", "PUT", "DELETE", "HEAD", "OPTIONS")


def _user_agent() -> str:
    return f"t2cal/{__version__}"


def create_client(
    base_url: str | None = None,
    auth: httpx.Auth | None = None,
    timeout: float = 30.0,
    headers: Mapping[str, str] | None = None,
    verify: bool | str = True,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create a configured httpx client.

    `transport` lets tests plug in `httpx.MockTransport`.
    """
    if verify is False and os.getenv("T2CAL_ENVIRONMENT") == "production":
        raise ValueError(
            "TLS certificate verification cannot be disabled in production. "
            "Set T2CAL_ENVIRONMENT to 'development' or 'test' to allow insecure connections."
        )
    if verify is False:
        log.warning("tls-verification-disabled; use only for development or testing")

    base_headers: MutableMapping[str, str] = {"User-Agent": _user_agent()}
    if headers:
        base_headers.update(headers)

    kwargs: dict[str, object] = {
        "auth": auth,
        "timeout": timeout,
        "headers": base_headers,
        "verify": verify,
        "limits": httpx.Limits(max_keepalive_connections=4, max_connections=8),
    }
    if base_url is not None:
        kwargs["base_url"] = base_url
    if transport is not None:
        kwargs["transport"] = transport
    return httpx.Client(**kwargs)  # type: ignore[arg-type]


def _should_retry(
    method: str,
    status_code: int | None,
    exc: Exception | None,
    retry: RetryConfig,
) -> bool:
    if method.upper() not in retry.methods:
        return False
    if exc is not None:
        return True
    if status_code is None:
        return False
    return status_code in retry.status_forcelist


def _sleep_backoff(attempt: int, retry: RetryConfig) -> None:
    # attempt starts at 1
    base = retry.backoff_initial_sec * (retry.backoff_factor ** (attempt - 1))
    jitter = base * retry.jitter_frac
    delay = base + random.uniform(-jitter, jitter)
    if delay > 0:
        time.sleep(delay)


def request_with_retries(
    client: httpx.Client,
    method: str,
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    data: str | bytes | None = None,
    retry: RetryConfig | None = None,
    expected: Iterable[int] = (200, 201, 204),
) -> httpx.Response:
    """Perform an HTTP request, retrying transient failures up to `retry.max_retries` attempts.

    Returns the last response when attempts are exhausted; re-raises the last
    transport error when no response was ever received.
    """
    cfg = retry or RetryConfig()
    expected_codes = tuple(expected)
    last_exc: Exception | None = None
    resp: httpx.Response | None = None

    for attempt in range(1, cfg.max_retries + 1):
        try:
            resp = client.request(method=method, url=url, headers=headers, content=data)
            if resp.status_code in expected_codes:
                return resp
            if not _should_retry(method, resp.status_code, None, cfg):
                return resp
            log.debug("http-retryable-status method=%s status=%s attempt=%d", method, resp.status_code, attempt)
        except httpx.HTTPError as exc:
            last_exc = exc
            resp = None
            if not _should_retry(method, None, exc, cfg):
                raise
            log.debug("http-transport-error method=%s attempt=%d err=%s", method, attempt, exc)

        if attempt < cfg.max_retries:
            _sleep_backoff(attempt, cfg)

    if resp is not None:
        return resp
    assert last_exc is not None
    raise last_exc
