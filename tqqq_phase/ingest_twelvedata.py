"""Synchronous Twelve Data price adapter.

Consumes two endpoints:
 1. /time_series   (bulk daily history, newest-first from the provider)
 2. /quote         (batched real-time quotes, comma-joined symbols)

All calls go through the shared ``FetchExecutor`` so timeouts, retries
and rate-limit backoff are handled in one place.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from ._http import FetchExecutor
from .common_types import PricePoint, Quote, SymbolSeries, normalize_series, parse_close, parse_date
from .errors import FetchError, SymbolLoadError

logger = logging.getLogger(__name__)

TWELVE_DATA_BASE = "https://api.twelvedata.com"


def _parse_values(symbol: str, values: Any) -> SymbolSeries:
    """Convert ``values[].{datetime, close}`` into an oldest-first series."""
    if not isinstance(values, list):
        return []
    points: list[PricePoint] = []
    for item in values:
        if not isinstance(item, dict):
            continue
        close = parse_close(item.get("close"))
        if close is None:
            logger.debug("[%s] skipping point with invalid close: %r", symbol, item)
            continue
        try:
            d = parse_date(item.get("datetime", ""))
        except ValueError:
            logger.debug("[%s] skipping point with invalid datetime: %r", symbol, item)
            continue
        points.append(PricePoint(date=d, close=close))
    # Provider returns newest-first; re-sort explicitly instead of reversing.
    return normalize_series(points)


def _parse_quote(symbol: str, raw: Any) -> Quote | None:
    if not isinstance(raw, dict) or raw.get("status") == "error":
        return None
    close = parse_close(raw.get("close"))
    if close is None:
        return None
    pct = raw.get("percent_change")
    try:
        pct_f = float(pct) if pct is not None else None
    except (TypeError, ValueError):
        pct_f = None
    return Quote(symbol=symbol, close=close, percent_change=pct_f)


class TwelveDataAdapter:
    """History loader + live quote source for the basket."""

    def __init__(
        self,
        api_key: str,
        executor: FetchExecutor | None = None,
        *,
        max_history_points: int = 5000,
        history_retries: int = 2,
        history_timeout_s: float = 10.0,
        quote_retries: int = 1,
        quote_timeout_s: float = 5.0,
        base_url: str = TWELVE_DATA_BASE,
    ) -> None:
        if not api_key:
            raise RuntimeError("TWELVE_DATA_API_KEY missing")
        self.api_key = api_key
        self.executor = executor or FetchExecutor()
        self.max_history_points = max_history_points
        self.history_retries = history_retries
        self.history_timeout_s = history_timeout_s
        self.quote_retries = quote_retries
        self.quote_timeout_s = quote_timeout_s
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_config(cls, cfg: Any, executor: FetchExecutor | None = None) -> TwelveDataAdapter:
        return cls(
            cfg.api_key,
            executor or FetchExecutor(
                retry_delay_s=cfg.retry_delay_s,
                rate_limit_backoff_s=cfg.rate_limit_backoff_s,
            ),
            max_history_points=cfg.max_history_points,
            history_retries=cfg.history_retries,
            history_timeout_s=cfg.history_timeout_s,
            quote_retries=cfg.quote_retries,
            quote_timeout_s=cfg.quote_timeout_s,
        )

    def load_history(self, symbol: str) -> SymbolSeries:
        """GET /time_series for *symbol*; oldest-first, never empty."""
        params = {
            "symbol": symbol,
            "interval": "1day",
            "outputsize": self.max_history_points,
            "apikey": self.api_key,
        }
        try:
            data = self.executor.execute(
                f"{self.base_url}/time_series",
                params,
                max_retries=self.history_retries,
                timeout_s=self.history_timeout_s,
            )
        except FetchError as exc:
            raise SymbolLoadError(symbol, exc) from exc

        values = data.get("values") if isinstance(data, dict) else None
        series = _parse_values(symbol, values)
        if not series:
            raise SymbolLoadError(symbol, "no values returned")
        logger.info("[%s] loaded %d daily closes (%s → %s)",
                    symbol, len(series), series[0].date, series[-1].date)
        return series

    def fetch_quotes(self, symbols: Iterable[str]) -> dict[str, Quote]:
        """GET /quote for all *symbols* in one call.

        Raises ``FetchError`` when the call itself fails; symbols with an
        error entry or an unusable close are left out of the result.
        """
        syms = list(symbols)
        if not syms:
            return {}
        data = self.executor.execute(
            f"{self.base_url}/quote",
            {"symbol": ",".join(syms), "apikey": self.api_key},
            max_retries=self.quote_retries,
            timeout_s=self.quote_timeout_s,
        )
        if not isinstance(data, dict):
            logger.warning("Quote endpoint returned %s instead of object", type(data).__name__)
            return {}

        # A single symbol comes back flat, several come back keyed by symbol.
        if len(syms) == 1 and "close" in data:
            raw_by_symbol = {syms[0]: data}
        else:
            raw_by_symbol = {s: data.get(s) for s in syms}

        quotes: dict[str, Quote] = {}
        for sym, raw in raw_by_symbol.items():
            q = _parse_quote(sym, raw)
            if q is None:
                logger.debug("No usable quote for %s: %r", sym, raw)
                continue
            quotes[sym] = q
        return quotes

    def close(self) -> None:
        self.executor.close()
