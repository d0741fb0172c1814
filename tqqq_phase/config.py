"""Global configuration for the phase engine.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field

DEFAULT_SYMBOLS: tuple[str, ...] = ("QQQ", "TQQQ", "SPY", "DIA", "GLD", "TLT", "VXX")

SECONDS_PER_DAY = 86400


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_list(key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Read a comma-separated env var as an upper-cased, de-duplicated tuple."""
    raw = os.getenv(key, "")
    if not raw.strip():
        return default
    items = [s.strip().upper() for s in raw.split(",") if s.strip()]
    return tuple(dict.fromkeys(items)) or default


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Twelve Data credentials (repr=False to prevent accidental logging)
    api_key: str = field(default_factory=lambda: os.getenv("TWELVE_DATA_API_KEY", ""), repr=False)

    # ── Basket ──────────────────────────────────────────────────
    symbols: tuple[str, ...] = field(default_factory=lambda: _env_list("TQQQ_SYMBOLS", DEFAULT_SYMBOLS))
    anchor_symbol: str = field(default_factory=lambda: os.getenv("TQQQ_ANCHOR_SYMBOL", "QQQ").strip().upper())

    # ── Crossover rule ──────────────────────────────────────────
    short_period: int = field(default_factory=lambda: _env_int("TQQQ_SHORT_PERIOD", 100))
    long_period: int = field(default_factory=lambda: _env_int("TQQQ_LONG_PERIOD", 200))

    # ── Provider budget ─────────────────────────────────────────
    max_history_points: int = field(default_factory=lambda: _env_int("TQQQ_MAX_HISTORY_POINTS", 5000))
    daily_request_budget: int = field(default_factory=lambda: _env_int("TQQQ_DAILY_REQUEST_BUDGET", 800))
    inter_symbol_pause_s: float = field(default_factory=lambda: _env_float("TQQQ_INTER_SYMBOL_PAUSE_S", 2.0))

    # ── Fetch executor ──────────────────────────────────────────
    history_retries: int = field(default_factory=lambda: _env_int("TQQQ_HISTORY_RETRIES", 2))
    history_timeout_s: float = field(default_factory=lambda: _env_float("TQQQ_HISTORY_TIMEOUT_S", 10.0))
    # Live quotes are retried less and time out sooner than history loads.
    quote_retries: int = field(default_factory=lambda: _env_int("TQQQ_QUOTE_RETRIES", 1))
    quote_timeout_s: float = field(default_factory=lambda: _env_float("TQQQ_QUOTE_TIMEOUT_S", 5.0))
    retry_delay_s: float = field(default_factory=lambda: _env_float("TQQQ_RETRY_DELAY_S", 1.0))
    rate_limit_backoff_s: float = field(default_factory=lambda: _env_float("TQQQ_RATE_LIMIT_BACKOFF_S", 3.0))

    # ── Sentiment ───────────────────────────────────────────────
    sentiment_timeout_s: float = field(default_factory=lambda: _env_float("TQQQ_SENTIMENT_TIMEOUT_S", 8.0))

    # ── State ───────────────────────────────────────────────────
    sqlite_path: str = field(default_factory=lambda: os.getenv("TQQQ_SQLITE_PATH", "tqqq_phase/state.db"))
    storage_key: str = field(default_factory=lambda: os.getenv("TQQQ_STORAGE_KEY", "tqqq_system_data_v4"))

    # ── Export / public snapshot ────────────────────────────────
    export_path: str = field(default_factory=lambda: os.getenv("TQQQ_EXPORT_PATH", "data.json"))
    # Local path or http(s) URL of a published snapshot (read-only mode).
    public_snapshot: str = field(default_factory=lambda: os.getenv("TQQQ_PUBLIC_SNAPSHOT", "data.json"))

    # ── Derived helpers ─────────────────────────────────────────

    @property
    def read_only(self) -> bool:
        """Without an API key the engine can only display published snapshots."""
        return not self.api_key

    @property
    def smart_interval_s(self) -> int:
        """Minimum spacing between live updates that keeps us inside the daily budget."""
        return compute_smart_interval(len(self.symbols), self.daily_request_budget)


def compute_smart_interval(symbol_count: int, daily_budget: int) -> int:
    """``ceil(86400 * symbol_count / daily_budget)`` seconds.

    Every live update costs one request credit per symbol, so spreading
    ``daily_budget`` credits evenly over a day yields this spacing.
    """
    if daily_budget <= 0:
        raise ValueError(f"daily_budget must be positive, got {daily_budget}")
    return math.ceil(SECONDS_PER_DAY * symbol_count / daily_budget)


def validate_config(cfg: Config) -> list[str]:
    """Return a list of human-readable problems (empty when *cfg* is usable)."""
    problems: list[str] = []
    if not cfg.symbols:
        problems.append("symbol basket is empty")
    if cfg.anchor_symbol not in cfg.symbols:
        problems.append(f"anchor symbol {cfg.anchor_symbol!r} is not in the basket {list(cfg.symbols)}")
    if cfg.short_period <= 0 or cfg.long_period <= 0:
        problems.append(
            f"moving-average periods must be positive (short={cfg.short_period}, long={cfg.long_period})"
        )
    elif cfg.short_period >= cfg.long_period:
        problems.append(
            f"short period ({cfg.short_period}) must be shorter than long period ({cfg.long_period})"
        )
    if cfg.daily_request_budget <= 0:
        problems.append(f"daily request budget must be positive, got {cfg.daily_request_budget}")
    if cfg.max_history_points < cfg.long_period:
        problems.append(
            f"max_history_points ({cfg.max_history_points}) is below the long period ({cfg.long_period})"
        )
    return problems
