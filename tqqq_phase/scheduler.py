"""Cycle controller: full historical load vs. incremental live update.

One ``CycleController`` owns the live ``AssetStore``.  Every mutating
operation runs under a non-blocking guard: a request that arrives while
another cycle is ``LOADING`` is dropped (not queued); the next scheduled
tick re-triggers it.

Per cycle:
  * **full load**: missing symbols are loaded one after another with a
    pause in between (daily request budget), each loaded symbol is
    checkpointed, sentiment is resolved once if no history exists yet.
  * **live update**: quotes and sentiment are fetched in parallel; a
    quote only overwrites the close of the last cached point, it never
    appends a date.

Both modes persist once in a ``finally`` block, so whatever was fetched
survives partial failures, then recompute the signal rows from scratch
and hand them to the presenter.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Iterator, Optional

from ._http import FetchExecutor, sanitize_exc
from .common_types import AssetStore, Quote, SentimentResult, SentimentSnapshot, SignalRow
from .config import Config, compute_smart_interval
from .errors import (
    ConcurrentCycleSkipped,
    FetchError,
    InvalidSnapshot,
    SentimentUnavailable,
    SymbolLoadError,
)
from .signals import compute_signals, latest_row
from .snapshot import FULL_HISTORY_VERSION, export_snapshot, parse_snapshot, read_snapshot_document

logger = logging.getLogger(__name__)

IDLE = "IDLE"
LOADING = "LOADING"

MODE_FULL_LOAD = "full_load"
MODE_LIVE_UPDATE = "live_update"
MODE_FRESH = "fresh"
MODE_SKIPPED = "skipped"
MODE_READ_ONLY = "read_only"
MODE_IMPORT = "import"

Presenter = Callable[[list[SignalRow], Optional[dict[str, Quote]], Optional[SentimentSnapshot]], None]


@dataclass
class CycleResult:
    """What one trigger did; ``status`` is the cycle-level message."""

    mode: str
    rows: list[SignalRow] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    status: str = ""
    quotes: dict[str, Quote] | None = None
    sentiment: SentimentSnapshot | None = None

    @property
    def skipped(self) -> bool:
        return self.mode == MODE_SKIPPED


def log_presenter(
    rows: list[SignalRow],
    quotes: dict[str, Quote] | None = None,
    sentiment: SentimentSnapshot | None = None,
) -> None:
    """Default presenter: one INFO line with the latest phase."""
    row = latest_row(rows)
    if row is None:
        return
    fng = sentiment.value if sentiment else row.sentiment
    logger.info(
        "%s %s phase%s | SMA short=%s long=%s | F&G=%s | quotes=%d",
        row.date.isoformat(),
        row.phase,
        f" ({row.signal})" if row.signal else "",
        f"{row.sma_short:.2f}" if row.sma_short is not None else "-",
        f"{row.sma_long:.2f}" if row.sma_long is not None else "-",
        fng if fng is not None else "-",
        len(quotes or {}),
    )


class CycleController:
    """Explicit engine/session object holding the store and the guard.

    Parameters
    ----------
    cfg : Config
    prices : TwelveDataAdapter or None
        History loader + quote source.  ``None`` means read-only mode:
        cycles reload the published snapshot instead.
    resolver : SentimentResolver or None
    repository : SqliteStore or None
        Anything with ``save(store)`` / ``load()``.
    presenter : callable, optional
        ``presenter(rows, quotes, sentiment)``; defaults to ``log_presenter``.
    clock : callable
        Epoch-seconds clock (injectable for tests).
    """

    def __init__(
        self,
        cfg: Config,
        prices: Any | None,
        resolver: Any | None,
        repository: Any | None = None,
        *,
        presenter: Presenter | None = None,
        executor: FetchExecutor | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.cfg = cfg
        self.prices = prices
        self.resolver = resolver
        self.repository = repository
        self.presenter = presenter or log_presenter
        self._executor = executor
        self._clock = clock

        self.store = AssetStore()
        self.rows: list[SignalRow] = []
        self.symbols: tuple[str, ...] = tuple(cfg.symbols)
        self.daily_budget: int = cfg.daily_request_budget
        self._interval_s = compute_smart_interval(len(self.symbols), self.daily_budget)

        self._state = IDLE
        self._lock = threading.Lock()

    # ── State / interval ────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def smart_interval_s(self) -> int:
        return self._interval_s

    def update_symbols(self, symbols: Iterable[str]) -> int:
        """Swap the basket; returns the recomputed interval."""
        self.symbols = tuple(dict.fromkeys(s.strip().upper() for s in symbols if s.strip()))
        return self._recompute_interval()

    def update_daily_budget(self, budget: int) -> int:
        """Change the daily request budget; returns the recomputed interval."""
        self.daily_budget = budget
        return self._recompute_interval()

    def _recompute_interval(self) -> int:
        self._interval_s = compute_smart_interval(len(self.symbols), self.daily_budget)
        logger.info("Smart interval: %.1f min for %d assets (%d requests/day)",
                    self._interval_s / 60, len(self.symbols), self.daily_budget)
        return self._interval_s

    @contextmanager
    def _cycle_guard(self, label: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise ConcurrentCycleSkipped(f"{label} requested while a cycle is running")
        self._state = LOADING
        try:
            yield
        finally:
            self._state = IDLE
            self._lock.release()

    # ── Helpers ─────────────────────────────────────────────────

    def compute(self) -> list[SignalRow]:
        self.rows = compute_signals(
            self.store,
            self.symbols,
            anchor=self.cfg.anchor_symbol,
            short_period=self.cfg.short_period,
            long_period=self.cfg.long_period,
        )
        return self.rows

    def _present(
        self,
        rows: list[SignalRow],
        quotes: dict[str, Quote] | None = None,
        sentiment: SentimentSnapshot | None = None,
    ) -> None:
        if not rows:
            return
        try:
            self.presenter(rows, quotes, sentiment)
        except Exception as exc:
            logger.warning("Presenter failed: %s", exc, exc_info=True)

    def _persist(self, warnings: list[str]) -> None:
        if self.repository is None:
            return
        try:
            self.repository.save(self.store)
        except Exception as exc:
            logger.warning("Persisting asset store failed: %s", exc)
            warnings.append(f"persist: {exc}")

    def _resolve_sentiment(self) -> SentimentResult:
        if self.resolver is None:
            raise SentimentUnavailable("no sentiment resolver configured")
        try:
            result = self.resolver.resolve()
        except Exception as exc:
            logger.warning("Sentiment resolution failed: %s", sanitize_exc(exc), exc_info=True)
            raise SentimentUnavailable(f"resolver error: {sanitize_exc(exc)}") from exc
        if result is None:
            raise SentimentUnavailable("all sentiment sources failed")
        return result

    def _apply_sentiment(self, result: SentimentResult) -> None:
        merged = self.store.merge_sentiment(result.history)
        self.store.last_sentiment = result.current
        logger.debug("Merged %d sentiment history points", merged)

    def _apply_quotes(self, quotes: dict[str, Quote]) -> int:
        """Overwrite the last cached close per symbol; returns how many changed."""
        updated = 0
        for sym in self.symbols:
            q = quotes.get(sym)
            series = self.store.series.get(sym)
            if q is None or not series:
                continue
            series[-1] = replace(series[-1], close=q.close)
            updated += 1
        return updated

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> bool:
        """Restore the persisted store and present it.  True if one was found."""
        if self.repository is None:
            return False
        loaded = self.repository.load()
        if loaded is None:
            logger.info("No persisted asset store found")
            return False
        self.store = loaded
        rows = self.compute()
        logger.info("Restored persisted asset store (%d symbols, %d rows)",
                    len(self.store.series), len(rows))
        self._present(rows, None, self.store.last_sentiment)
        return True

    def run_cycle(self) -> CycleResult:
        """One scheduled tick: full load, live update, or nothing."""
        if self.prices is None:
            return self.load_public_snapshot()
        try:
            with self._cycle_guard("cycle"):
                missing = self.store.missing_symbols(self.symbols)
                if missing:
                    return self._full_load(missing)
                age = self._clock() - self.store.last_update
                if age > self._interval_s:
                    return self._live_update()
                return CycleResult(
                    mode=MODE_FRESH,
                    rows=self.rows,
                    status=f"data is fresh ({age:.0f}s old, live update after {self._interval_s}s)",
                )
        except ConcurrentCycleSkipped as exc:
            logger.debug("Cycle skipped: %s", exc)
            return CycleResult(mode=MODE_SKIPPED, status=str(exc))

    def full_load(self, symbols: Iterable[str] | None = None, *, refresh_sentiment: bool = False) -> CycleResult:
        """Reload history for *symbols* (default: whole basket).

        Sentiment is only resolved when no history exists yet, unless
        *refresh_sentiment* is set.
        """
        if self.prices is None:
            raise RuntimeError("full load needs a price source (API key)")
        try:
            with self._cycle_guard("full load"):
                targets = list(symbols) if symbols is not None else list(self.symbols)
                return self._full_load(targets, refresh_sentiment=refresh_sentiment)
        except ConcurrentCycleSkipped as exc:
            logger.debug("Full load skipped: %s", exc)
            return CycleResult(mode=MODE_SKIPPED, status=str(exc))

    def live_update(self) -> CycleResult:
        """Refresh the latest closes and the sentiment reading."""
        if self.prices is None:
            raise RuntimeError("live update needs a price source (API key)")
        try:
            with self._cycle_guard("live update"):
                return self._live_update()
        except ConcurrentCycleSkipped as exc:
            logger.debug("Live update skipped: %s", exc)
            return CycleResult(mode=MODE_SKIPPED, status=str(exc))

    # ── Cycle bodies (guard held) ───────────────────────────────

    def _full_load(self, targets: list[str], *, refresh_sentiment: bool = False) -> CycleResult:
        warnings: list[str] = []
        loaded: list[str] = []
        sentiment: SentimentSnapshot | None = None
        try:
            for i, sym in enumerate(targets):
                logger.info("Loading history [%s] (%d/%d)", sym, i + 1, len(targets))
                try:
                    series = self.prices.load_history(sym)
                except SymbolLoadError as exc:
                    logger.warning("%s", exc)
                    warnings.append(str(exc))
                else:
                    self.store.series[sym] = series
                    loaded.append(sym)
                    self._persist(warnings)
                if i < len(targets) - 1 and self.cfg.inter_symbol_pause_s > 0:
                    time.sleep(self.cfg.inter_symbol_pause_s)

            if refresh_sentiment or not self.store.sentiment_history:
                try:
                    result = self._resolve_sentiment()
                except SentimentUnavailable as exc:
                    warnings.append(f"sentiment: {exc}")
                else:
                    self._apply_sentiment(result)
                    sentiment = result.current

            self.store.last_update = self._clock()
        finally:
            self._persist(warnings)

        rows = self.compute()
        self._present(rows, None, sentiment)
        status = f"full load: {len(loaded)}/{len(targets)} symbols loaded"
        if warnings:
            status += f", {len(warnings)} warning(s)"
        logger.info("%s", status)
        return CycleResult(
            mode=MODE_FULL_LOAD, rows=rows, warnings=warnings, status=status, sentiment=sentiment,
        )

    def _live_update(self) -> CycleResult:
        warnings: list[str] = []
        quotes: dict[str, Quote] | None = None
        sentiment: SentimentSnapshot | None = None
        updated = 0
        try:
            # Independent requests: one failing never cancels the other.
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="live-update") as pool:
                f_quotes = pool.submit(self.prices.fetch_quotes, self.symbols)
                f_sentiment = pool.submit(self._resolve_sentiment)
                try:
                    quotes = f_quotes.result()
                except FetchError as exc:
                    logger.warning("Quotes load failed: %s", sanitize_exc(exc))
                    warnings.append(f"quotes: {sanitize_exc(exc)}")
                try:
                    result = f_sentiment.result()
                except SentimentUnavailable as exc:
                    warnings.append(f"sentiment: {exc}")
                else:
                    self._apply_sentiment(result)
                    sentiment = result.current

            if quotes:
                updated = self._apply_quotes(quotes)
            self.store.last_update = self._clock()
        finally:
            self._persist(warnings)

        rows = self.compute()
        self._present(rows, quotes, sentiment)
        status = f"live update: {updated}/{len(self.symbols)} closes refreshed"
        if warnings:
            status += f", {len(warnings)} warning(s)"
        logger.info("%s", status)
        return CycleResult(
            mode=MODE_LIVE_UPDATE, rows=rows, warnings=warnings, status=status,
            quotes=quotes, sentiment=sentiment,
        )

    # ── Snapshots ───────────────────────────────────────────────

    def export(self, path: str, version: str = FULL_HISTORY_VERSION) -> dict[str, Any]:
        rows = self.rows or self.compute()
        return export_snapshot(path, self.store, rows, self.cfg, version)

    def import_snapshot(self, path: str) -> CycleResult:
        """Validate *path* and only then replace the live store.

        ``InvalidSnapshot`` propagates with the live store untouched.
        """
        try:
            with self._cycle_guard("import"):
                doc = read_snapshot_document(path, self._executor)
                store = parse_snapshot(doc, self.cfg.anchor_symbol)
                self.store = store
                warnings: list[str] = []
                self._persist(warnings)
                rows = self.compute()
                self._present(rows, None, store.last_sentiment)
                status = f"imported snapshot {path} ({len(store.series)} symbols, {len(rows)} rows)"
                logger.info("%s", status)
                return CycleResult(mode=MODE_IMPORT, rows=rows, warnings=warnings, status=status)
        except ConcurrentCycleSkipped as exc:
            return CycleResult(mode=MODE_SKIPPED, status=str(exc))

    def load_public_snapshot(self, source: str | None = None) -> CycleResult:
        """Read-only mode: display a published snapshot, never persist it."""
        source = source or self.cfg.public_snapshot
        try:
            with self._cycle_guard("public snapshot"):
                try:
                    doc = read_snapshot_document(source, self._executor)
                    store = parse_snapshot(doc, self.cfg.anchor_symbol)
                except (InvalidSnapshot, FetchError) as exc:
                    msg = sanitize_exc(exc)
                    logger.warning("Public snapshot unavailable (%s): %s", source, msg)
                    return CycleResult(
                        mode=MODE_READ_ONLY,
                        rows=self.rows,
                        warnings=[f"public snapshot: {msg}"],
                        status="public snapshot unavailable; configure TWELVE_DATA_API_KEY",
                    )
                self.store = store
                rows = self.compute()
                self._present(rows, None, store.last_sentiment)
                return CycleResult(
                    mode=MODE_READ_ONLY,
                    rows=rows,
                    status=f"loaded public snapshot ({len(rows)} rows, read-only)",
                    sentiment=store.last_sentiment,
                )
        except ConcurrentCycleSkipped as exc:
            return CycleResult(mode=MODE_SKIPPED, status=str(exc))
