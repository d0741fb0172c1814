"""SQLite persistence for the AssetStore snapshot.

The controller only needs ``save``/``load`` of one opaque snapshot, up
to date as of the last save.  It lives as compact JSON under a single
key of a key-value table, next to a ``<key>:saved_at`` timestamp that
is written in the same transaction.

WAL journal + NORMAL synchronous: the background poller writes while
the CLI thread may read.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Optional

from .common_types import AssetStore

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "tqqq_system_data_v4"

_SCHEMA = "CREATE TABLE IF NOT EXISTS kv (k TEXT PRIMARY KEY, v TEXT NOT NULL);"
_UPSERT = "INSERT INTO kv(k, v) VALUES(?, ?) ON CONFLICT(k) DO UPDATE SET v=excluded.v"


class SqliteStore:
    """Key-value table plus AssetStore load/save."""

    def __init__(self, path: str, storage_key: str = DEFAULT_STORAGE_KEY) -> None:
        self.path = path
        self.storage_key = storage_key
        self.conn = sqlite3.connect(path, isolation_level=None, check_same_thread=False)
        for pragma in ("journal_mode=WAL", "synchronous=NORMAL", "busy_timeout=5000"):
            self.conn.execute(f"PRAGMA {pragma};")
        self.conn.execute(_SCHEMA)

    @property
    def _saved_at_key(self) -> str:
        return f"{self.storage_key}:saved_at"

    def get_kv(self, k: str) -> Optional[str]:
        cur = self.conn.execute("SELECT v FROM kv WHERE k=?", (k,))
        found = cur.fetchone()
        return None if found is None else found[0]

    def set_kv(self, k: str, v: str) -> None:
        self.conn.execute(_UPSERT, (k, v))

    def save(self, store: AssetStore) -> None:
        payload = json.dumps(store.to_dict(), separators=(",", ":"))
        with self.conn:
            self.conn.execute("BEGIN")
            self.conn.execute(_UPSERT, (self.storage_key, payload))
            self.conn.execute(_UPSERT, (self._saved_at_key, repr(time.time())))
        logger.debug("Saved asset store (%d bytes, %d symbols)", len(payload), len(store.series))

    def load(self) -> Optional[AssetStore]:
        """Return the persisted store, or ``None`` when absent or unreadable."""
        raw = self.get_kv(self.storage_key)
        if raw is None:
            return None
        try:
            return AssetStore.from_dict(json.loads(raw))
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("Persisted snapshot %r is unreadable, starting empty: %s",
                           self.storage_key, exc)
            return None

    def last_saved_at(self) -> Optional[float]:
        """Epoch seconds of the last ``save``, ``None`` if never saved."""
        raw = self.get_kv(self._saved_at_key)
        return float(raw) if raw is not None else None

    def close(self) -> None:
        self.conn.close()
