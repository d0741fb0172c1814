"""Structured error taxonomy for the phase engine.

Transport-level failures (``NetworkError``, ``HttpError``, ``RateLimited``,
``MalformedPayload``) are retried inside the fetch executor and surface
only once its attempts are exhausted.  Everything above that layer is
converted into cycle-level status messages by the controller; a single
symbol or the sentiment source never aborts a whole cycle.
"""
from __future__ import annotations


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class PhaseEngineError(Exception):
    """Base error for all tqqq_phase subsystems."""
    pass


class FetchError(PhaseEngineError):
    """An upstream call failed.  ``url`` is already sanitized."""

    def __init__(self, message: str, *, url: str = ""):
        self.url = url
        super().__init__(message)


class NetworkError(FetchError):
    """No response within the timeout, or a transport failure."""
    pass


class HttpError(FetchError):
    """Non-2xx status, or an upstream error envelope that is not a throttle."""

    def __init__(self, message: str, *, url: str = "", status: int | None = None):
        self.status = status
        super().__init__(message, url=url)


class RateLimited(FetchError):
    """Upstream reported its throttle code."""
    pass


class MalformedPayload(FetchError):
    """Response body is not the JSON document the endpoint promises."""
    pass


class SymbolLoadError(PhaseEngineError):
    """History for one symbol could not be loaded."""

    def __init__(self, symbol: str, cause: Exception | str):
        self.symbol = symbol
        self.cause = cause
        super().__init__(f"[{symbol}] history load failed: {cause}")


class SentimentUnavailable(PhaseEngineError):
    """Every (target, proxy) combination failed this cycle."""
    pass


class InvalidSnapshot(PhaseEngineError):
    """Imported snapshot is malformed; live state was not touched."""
    pass


class ConcurrentCycleSkipped(PhaseEngineError):
    """A cycle was requested while another one is in flight.

    Not a failure: the controller turns this into a ``skipped`` result.
    """
    pass
