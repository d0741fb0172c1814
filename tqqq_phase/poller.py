"""Background scheduling thread for the cycle controller.

Runs ``CycleController.run_cycle()`` once right away and then every
smart interval.  The interval is re-read after each cycle, so a basket
or budget change takes effect on the next wait.  ``trigger_now()`` cuts
the current wait short (manual refresh); ``stop()`` ends the loop.

A tick that lands while another trigger is still running is skipped by
the controller's guard, not queued here.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any

from ._http import sanitize_exc

logger = logging.getLogger(__name__)


class BackgroundPoller:
    """Drives ``run_cycle`` on the controller's smart interval."""

    def __init__(self, controller: Any) -> None:
        self._controller = controller
        self._interval_lock = threading.Lock()
        self._interval_override: float | None = None
        self._stopping = threading.Event()
        self._wake = threading.Event()
        self._worker: threading.Thread | None = None

        # Read from other threads; plain attribute swaps only.
        self.poll_count: int = 0
        self.last_poll_ts: float = 0.0
        self.last_poll_status: str = "never polled"
        self.last_poll_error: str = ""
        self.last_result: Any = None

    @property
    def is_alive(self) -> bool:
        worker = self._worker
        return worker is not None and worker.is_alive()

    def start(self) -> None:
        """Spawn the daemon worker unless one is already running."""
        if self.is_alive:
            return
        self._stopping.clear()
        self._wake.clear()
        self._worker = threading.Thread(target=self._run_loop, name="tqqq-phase-poller", daemon=True)
        self._worker.start()
        logger.info("Poller started, first cycle now, then every %.0fs", self._get_interval())

    def stop(self, timeout: float | None = None) -> None:
        self._stopping.set()
        self._wake.set()
        if timeout is not None and self._worker is not None:
            self._worker.join(timeout)
        logger.info("Poller stopped after %d cycle(s)", self.poll_count)

    def trigger_now(self) -> None:
        """Run the next cycle without waiting out the interval."""
        self._wake.set()

    def update_interval(self, interval_s: float | None) -> None:
        """Pin the wait to *interval_s*; ``None`` follows the controller again."""
        with self._interval_lock:
            self._interval_override = interval_s

    def _get_interval(self) -> float:
        with self._interval_lock:
            override = self._interval_override
        if override is not None:
            return override
        return float(self._controller.smart_interval_s)

    def poll_once(self) -> None:
        """Run one cycle and record its outcome."""
        self.last_poll_ts = time.time()
        try:
            result = self._controller.run_cycle()
        except Exception as exc:
            safe = sanitize_exc(exc)
            logger.exception("Background cycle failed: %s", safe)
            self.last_poll_status = "ERROR"
            self.last_poll_error = safe
            return
        self.poll_count += 1
        self.last_result = result
        self.last_poll_status = f"{result.mode}: {result.status}"
        self.last_poll_error = "; ".join(result.warnings)

    def _run_loop(self) -> None:
        while not self._stopping.is_set():
            self.poll_once()
            interval = self._get_interval()
            logger.debug("Next cycle in %.0fs", interval)
            woken = self._wake.wait(timeout=interval)
            self._wake.clear()
            if woken and not self._stopping.is_set():
                logger.info("Manual refresh requested")
