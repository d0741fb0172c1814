"""Moving-average phase engine.

``compute_signals`` is a pure function of the ``AssetStore``: the whole
phase history is replayed from the first anchor bar on every call, so
two calls on an unchanged store return identical rows.

Phase rule (hysteresis):
  HEDGE → LONG   close above both the short and the long SMA
  LONG  → HEDGE  close below the long SMA
A LONG phase is not left just because the close dips under the short
SMA.  While either SMA is undefined the phase holds.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Iterable, Sequence

from .common_types import (
    PHASE_HEDGE,
    PHASE_LONG,
    SIGNAL_BUY,
    SIGNAL_SELL,
    AssetStore,
    PricePoint,
    SignalRow,
)

logger = logging.getLogger(__name__)


def sma(closes: Sequence[float], period: int) -> list[float | None]:
    """Trailing simple moving average, ``None`` until *period* closes exist.

    Each value is summed independently over its own window so the
    result does not depend on accumulated floating-point drift.
    """
    n = len(closes)
    if period <= 0 or n < period:
        return [None] * n
    out: list[float | None] = [None] * (period - 1)
    for i in range(period - 1, n):
        total = 0.0
        for j in range(period):
            total += closes[i - j]
        out.append(total / period)
    return out


def next_phase(phase: str, close: float, sma_short: float | None, sma_long: float | None) -> str:
    """Advance the two-state machine by one bar."""
    if sma_short is None or sma_long is None:
        return phase
    if phase == PHASE_HEDGE and close > sma_short and close > sma_long:
        return PHASE_LONG
    if phase == PHASE_LONG and close < sma_long:
        return PHASE_HEDGE
    return phase


def _close_map(points: Iterable[PricePoint]) -> dict[date, float]:
    return {p.date: p.close for p in points}


def compute_signals(
    store: AssetStore,
    symbols: Sequence[str] = (),
    *,
    anchor: str = "QQQ",
    short_period: int = 100,
    long_period: int = 200,
) -> list[SignalRow]:
    """Derive one ``SignalRow`` per date of the anchor series.

    Per-symbol closes are matched by exact date and carried forward
    from the previous row when missing (market holidays).  Sentiment is
    matched by exact date only and stays ``None`` when absent.
    """
    anchor_series = store.series.get(anchor) or []
    if not anchor_series:
        return []

    columns = list(dict.fromkeys([anchor, *symbols]))
    closes_by_symbol = {s: _close_map(store.series.get(s) or []) for s in columns}

    anchor_closes = [p.close for p in anchor_series]
    short_sma = sma(anchor_closes, short_period)
    long_sma = sma(anchor_closes, long_period)

    rows: list[SignalRow] = []
    phase = PHASE_HEDGE
    prev: SignalRow | None = None
    for i, point in enumerate(anchor_series):
        s_short, s_long = short_sma[i], long_sma[i]
        phase = next_phase(phase, point.close, s_short, s_long)

        signal: str | None = None
        if prev is not None and phase != prev.phase:
            signal = SIGNAL_BUY if phase == PHASE_LONG else SIGNAL_SELL

        closes: dict[str, float | None] = {}
        for s in columns:
            value = closes_by_symbol[s].get(point.date)
            if value is None and prev is not None:
                value = prev.closes.get(s)
            closes[s] = value

        row = SignalRow(
            date=point.date,
            phase=phase,
            signal=signal,
            sma_short=s_short,
            sma_long=s_long,
            sentiment=store.sentiment_history.get(point.date),
            closes=closes,
        )
        rows.append(row)
        prev = row
    return rows


def latest_row(rows: Sequence[SignalRow]) -> SignalRow | None:
    return rows[-1] if rows else None


def signal_events(rows: Iterable[SignalRow]) -> list[SignalRow]:
    """Rows on which the phase flipped (BUY or SELL)."""
    return [r for r in rows if r.signal is not None]
