"""Versioned snapshot export/import.

Document shape::

    {
      "version": "v4-full-history",
      "timestamp": "2024-05-01T12:00:00+00:00",
      "assetStore": {"lastUpdate": <ms>, "data": {...}, ...},
      "strategyResults": [ {row}, ... ],
      "config": {"symbols": [...], "maxHistoryPoints": 5000}
    }

A bare ``assetStore`` object is accepted on import as well.  Derived
rows in a document are informational only: after import they are
recomputed from the store, which is the single source of truth.

Writes are atomic (tempfile + ``os.replace``) so a crash mid-export
cannot leave a truncated document behind.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import UTC, datetime
from typing import Any, Sequence

import pandas as pd

from ._http import FetchExecutor
from .common_types import AssetStore, SignalRow
from .errors import InvalidSnapshot

logger = logging.getLogger(__name__)

FULL_HISTORY_VERSION = "v4-full-history"
ACTIONS_SYNC_VERSION = "v4-actions-sync"


def build_snapshot(
    store: AssetStore,
    rows: Sequence[SignalRow],
    cfg: Any,
    version: str = FULL_HISTORY_VERSION,
) -> dict[str, Any]:
    return {
        "version": version,
        "timestamp": datetime.now(UTC).isoformat(),
        "assetStore": store.to_dict(),
        "strategyResults": [r.to_dict(cfg.short_period, cfg.long_period) for r in rows],
        "config": {
            "symbols": list(cfg.symbols),
            "maxHistoryPoints": cfg.max_history_points,
        },
    }


def _atomic_write_text(path: str, text: str) -> None:
    dest_dir = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(dest_dir, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=dest_dir, suffix=".tmp", prefix="snap_")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def export_snapshot(
    path: str,
    store: AssetStore,
    rows: Sequence[SignalRow],
    cfg: Any,
    version: str = FULL_HISTORY_VERSION,
) -> dict[str, Any]:
    """Write the snapshot document to *path* and return it."""
    doc = build_snapshot(store, rows, cfg, version)
    _atomic_write_text(path, json.dumps(doc, indent=2, ensure_ascii=False))
    logger.info("Exported snapshot %s (%s, %d rows)", path, version, len(rows))
    return doc


def parse_snapshot(doc: Any, anchor: str = "QQQ") -> AssetStore:
    """Validate *doc* and return its ``AssetStore``.

    Raises ``InvalidSnapshot`` unless the document decodes cleanly and
    holds a non-empty series for *anchor*.
    """
    if not isinstance(doc, dict):
        raise InvalidSnapshot(f"snapshot must be a JSON object, got {type(doc).__name__}")
    raw_store = doc.get("assetStore", doc)
    if not isinstance(raw_store, dict) or not isinstance(raw_store.get("data"), dict):
        raise InvalidSnapshot("snapshot has no asset data")
    if not raw_store["data"].get(anchor):
        raise InvalidSnapshot(f"snapshot has no {anchor} series")
    try:
        store = AssetStore.from_dict(raw_store)
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        raise InvalidSnapshot(f"snapshot is malformed: {exc}") from exc
    if not store.series.get(anchor):
        raise InvalidSnapshot(f"snapshot {anchor} series has no valid points")
    return store


def read_snapshot_document(source: str, executor: FetchExecutor | None = None) -> Any:
    """Load a snapshot document from a local path or an http(s) URL.

    URLs go through the fetch executor (one attempt, cache-busting
    ``v`` parameter); ``FetchError`` propagates.  File problems raise
    ``InvalidSnapshot``.
    """
    if source.startswith(("http://", "https://")):
        executor = executor or FetchExecutor()
        return executor.execute(source, {"v": int(time.time())}, max_retries=1, timeout_s=10.0)
    try:
        with open(source, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise InvalidSnapshot(f"snapshot file not found: {source}") from None
    except (OSError, ValueError) as exc:
        raise InvalidSnapshot(f"snapshot file unreadable: {exc}") from exc


def import_snapshot(path: str, anchor: str = "QQQ") -> AssetStore:
    """Read and validate a snapshot file."""
    return parse_snapshot(read_snapshot_document(path), anchor)


# ── Tabular export ──────────────────────────────────────────────

def signal_rows_frame(rows: Sequence[SignalRow], cfg: Any) -> pd.DataFrame:
    """Full derived history as a DataFrame, newest first."""
    records = [r.to_dict(cfg.short_period, cfg.long_period) for r in reversed(rows)]
    columns = [
        "date", "phase", "signal",
        f"SMA{cfg.short_period}", f"SMA{cfg.long_period}", "sentiment",
        *cfg.symbols,
    ]
    return pd.DataFrame.from_records(records, columns=columns)


def export_signal_csv(path: str, rows: Sequence[SignalRow], cfg: Any) -> int:
    """Write the derived history as CSV; returns the number of rows written."""
    frame = signal_rows_frame(rows, cfg)
    os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
    frame.to_csv(path, index=False, float_format="%.4f")
    logger.info("Exported %d signal rows to %s", len(frame), path)
    return len(frame)
