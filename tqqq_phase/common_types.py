"""Unified internal schema shared across the engine.

Price and sentiment adapters normalise their raw payloads into these
records before they enter the ``AssetStore``.  ``SignalRow`` is a derived
view and is never the primary record.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Iterable

logger = logging.getLogger(__name__)

PHASE_LONG = "LONG"
PHASE_HEDGE = "HEDGE"

SIGNAL_BUY = "BUY"
SIGNAL_SELL = "SELL"


def parse_date(value: Any) -> date:
    """Accept a ``date`` or an ISO string (time component, if any, is dropped)."""
    if isinstance(value, date):
        return value
    text = str(value).strip()
    return date.fromisoformat(text[:10])


def parse_close(value: Any) -> float | None:
    """Positive finite float or ``None``."""
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f) or f <= 0:
        return None
    return f


@dataclass(frozen=True)
class PricePoint:
    """One daily close.  Immutable; a live quote replaces the whole point."""

    date: date
    close: float

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "close": self.close}


# Ordered oldest-first, strictly increasing by date.
SymbolSeries = list[PricePoint]


def normalize_series(points: Iterable[PricePoint]) -> SymbolSeries:
    """Sort oldest-first and drop duplicate dates (last one wins).

    Provider ordering is never trusted; gaps are left as they are.
    """
    by_date: dict[date, PricePoint] = {}
    for p in points:
        by_date[p.date] = p
    return [by_date[d] for d in sorted(by_date)]


@dataclass(frozen=True)
class SentimentPoint:
    date: date
    value: int  # 0–100


# date -> 0–100 score
SentimentHistory = dict[date, int]


@dataclass(frozen=True)
class SentimentSnapshot:
    """Current Fear & Greed reading."""

    value: int
    status: str  # EXTREME FEAR / FEAR / NEUTRAL / GREED / EXTREME GREED
    as_of: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "status": self.status,
            "date": self.as_of.isoformat() if self.as_of else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> SentimentSnapshot:
        as_of = d.get("date")
        return cls(
            value=int(d["value"]),
            status=str(d.get("status", "")),
            as_of=parse_date(as_of) if as_of else None,
        )


@dataclass(frozen=True)
class SentimentResult:
    """Outcome of one successful sentiment resolution."""

    current: SentimentSnapshot
    history: list[SentimentPoint] = field(default_factory=list)
    source: str = ""  # "<target> via <proxy>"


@dataclass(frozen=True)
class Quote:
    """Live quote from the batched quote endpoint."""

    symbol: str
    close: float
    percent_change: float | None = None


@dataclass
class AssetStore:
    """Root aggregate: cached series per symbol plus sentiment history.

    Exclusively owned by the cycle controller; persisted as an opaque
    snapshot after every mutation batch.
    """

    last_update: float = 0.0  # epoch seconds
    series: dict[str, SymbolSeries] = field(default_factory=dict)
    sentiment_history: SentimentHistory = field(default_factory=dict)
    last_sentiment: SentimentSnapshot | None = None

    def missing_symbols(self, symbols: Iterable[str]) -> list[str]:
        """Symbols without any cached points, in basket order."""
        return [s for s in symbols if not self.series.get(s)]

    def merge_sentiment(self, points: Iterable[SentimentPoint]) -> int:
        """Merge *points* into the history; returns the number of dates written."""
        n = 0
        for p in points:
            self.sentiment_history[p.date] = p.value
            n += 1
        return n

    # ── Wire format ─────────────────────────────────────────────
    # ``lastUpdate`` is epoch milliseconds so snapshots published by the
    # scheduled sync job stay interchangeable with older documents.

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdate": int(self.last_update * 1000),
            "data": {
                sym: [p.to_dict() for p in pts]
                for sym, pts in self.series.items()
            },
            "sentimentHistory": {
                d.isoformat(): v for d, v in sorted(self.sentiment_history.items())
            },
            "lastSentiment": self.last_sentiment.to_dict() if self.last_sentiment else None,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AssetStore:
        """Rebuild a store from its wire form.

        Raises ``ValueError``/``TypeError``/``KeyError`` on structurally
        broken input; callers decide how to report that.
        """
        if not isinstance(d, dict):
            raise TypeError(f"asset store must be an object, got {type(d).__name__}")
        data = d.get("data") or {}
        if not isinstance(data, dict):
            raise TypeError("asset store 'data' must be an object")

        series: dict[str, SymbolSeries] = {}
        for sym, raw_points in data.items():
            if not isinstance(raw_points, list):
                raise TypeError(f"series for {sym!r} must be a list")
            points: list[PricePoint] = []
            for raw in raw_points:
                close = parse_close(raw.get("close"))
                if close is None:
                    logger.debug("Dropping invalid close for %s: %r", sym, raw)
                    continue
                points.append(PricePoint(date=parse_date(raw["date"]), close=close))
            series[str(sym)] = normalize_series(points)

        history: SentimentHistory = {}
        for k, v in (d.get("sentimentHistory") or {}).items():
            history[parse_date(k)] = int(v)

        last = d.get("lastSentiment")
        last_update = d.get("lastUpdate") or 0
        return cls(
            last_update=float(last_update) / 1000.0,
            series=series,
            sentiment_history=history,
            last_sentiment=SentimentSnapshot.from_dict(last) if isinstance(last, dict) else None,
        )


@dataclass(frozen=True)
class SignalRow:
    """One derived output row per anchor trading day."""

    date: date
    phase: str  # LONG | HEDGE
    signal: str | None  # BUY | SELL | None
    sma_short: float | None
    sma_long: float | None
    sentiment: int | None  # None renders as "no data"
    closes: dict[str, float | None] = field(default_factory=dict)

    def to_dict(self, short_period: int = 100, long_period: int = 200) -> dict[str, Any]:
        """Serialise to plain dict (for JSON export / display)."""
        row: dict[str, Any] = {
            "date": self.date.isoformat(),
            "phase": self.phase,
            "signal": self.signal,
            f"SMA{short_period}": self.sma_short,
            f"SMA{long_period}": self.sma_long,
            "sentiment": self.sentiment,
        }
        row.update(self.closes)
        return row
