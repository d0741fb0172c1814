"""Shared HTTP helpers: URL sanitisation and the retrying fetch executor.

Centralises URL/exception sanitisation so that API keys are never logged
in plain text, regardless of which adapter raises the error.

``FetchExecutor.execute`` is the single timeout + bounded-retry +
rate-limit-aware wrapper used by every price-API call.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any

import httpx

from .errors import FetchError, HttpError, MalformedPayload, NetworkError, RateLimited

logger = logging.getLogger(__name__)

# Regex to strip API keys/tokens from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|api_key|token|key)=[^&\s]+", re.IGNORECASE)

# Twelve Data reports throttling inside a 200 body as ``{"code": 429}``.
RATE_LIMIT_CODE = 429


def sanitize_url(url: str) -> str:
    """Remove apikey/token query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """Strip API keys/tokens from exception text for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", str(exc))


def _check_envelope(data: Any, url: str) -> None:
    """Raise for ``{"status": "error", ...}`` envelopes."""
    if not isinstance(data, dict) or data.get("status") != "error":
        return
    code = data.get("code")
    message = str(data.get("message") or "Unknown API error")
    if code == RATE_LIMIT_CODE:
        raise RateLimited(f"rate limited: {sanitize_exc(message)}", url=url)
    raise HttpError(
        f"API error {code}: {sanitize_exc(message)}",
        url=url,
        status=code if isinstance(code, int) else None,
    )


class FetchExecutor:
    """Timeout + bounded-retry GET returning parsed JSON.

    Generic failures wait a fixed ``retry_delay_s`` before the next
    attempt; throttling waits ``rate_limit_backoff_s * attempt`` (linear).
    Every attempt counts against ``max_retries``.  When attempts run out
    the last error is raised; partial results are never returned.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        retry_delay_s: float = 1.0,
        rate_limit_backoff_s: float = 3.0,
    ) -> None:
        self.client = client or httpx.Client(
            follow_redirects=True,
            headers={"User-Agent": "tqqq-phase/1.0"},
        )
        self.retry_delay_s = retry_delay_s
        self.rate_limit_backoff_s = rate_limit_backoff_s

    def _attempt(self, url: str, params: dict[str, Any] | None, timeout_s: float) -> Any:
        safe = sanitize_url(url)
        try:
            r = self.client.get(url, params=params, timeout=timeout_s)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"timeout after {timeout_s:.1f}s", url=safe) from exc
        except httpx.TransportError as exc:
            raise NetworkError(
                f"transport failure ({type(exc).__name__}): {sanitize_exc(exc)}", url=safe,
            ) from exc

        safe = sanitize_url(str(r.url))
        if r.status_code == RATE_LIMIT_CODE:
            raise RateLimited(f"HTTP {r.status_code}", url=safe)
        if not 200 <= r.status_code < 300:
            raise HttpError(f"HTTP {r.status_code}", url=safe, status=r.status_code)

        ct = r.headers.get("content-type", "")
        try:
            data = r.json()
        except (json.JSONDecodeError, ValueError):
            raise MalformedPayload(
                f"non-JSON body (content-type={ct!r}, status={r.status_code})", url=safe,
            ) from None
        _check_envelope(data, safe)
        return data

    def execute(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        *,
        max_retries: int = 2,
        timeout_s: float = 10.0,
    ) -> Any:
        """GET *url* and return the parsed JSON body."""
        attempts = max(1, max_retries)
        last_exc: FetchError | None = None
        for attempt in range(1, attempts + 1):
            try:
                return self._attempt(url, params, timeout_s)
            except RateLimited as exc:
                last_exc = exc
                wait = self.rate_limit_backoff_s * attempt
                logger.warning(
                    "Rate limit hit for %s (attempt %d/%d)%s",
                    exc.url or sanitize_url(url), attempt, attempts,
                    f" – retrying in {wait:.1f}s" if attempt < attempts else "",
                )
                if attempt < attempts:
                    time.sleep(wait)
            except FetchError as exc:
                last_exc = exc
                logger.warning(
                    "Fetch attempt %d/%d failed for %s: %s",
                    attempt, attempts, exc.url or sanitize_url(url), exc,
                )
                if attempt < attempts:
                    time.sleep(self.retry_delay_s)
        assert last_exc is not None
        raise last_exc

    def close(self) -> None:
        self.client.close()
