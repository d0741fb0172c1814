"""Tests for tqqq_phase.poller: background scheduling thread."""
from __future__ import annotations

import time
from unittest.mock import MagicMock

from tqqq_phase.poller import BackgroundPoller
from tqqq_phase.scheduler import MODE_FRESH, MODE_LIVE_UPDATE, CycleResult


def _controller(interval_s: int = 756) -> MagicMock:
    ctl = MagicMock()
    ctl.smart_interval_s = interval_s
    ctl.run_cycle.return_value = CycleResult(mode=MODE_FRESH, status="data is fresh")
    return ctl


class TestBackgroundPoller:
    def test_init(self):
        bp = BackgroundPoller(_controller())
        assert bp.poll_count == 0
        assert bp.is_alive is False

    def test_interval_follows_controller(self):
        ctl = _controller(216)
        bp = BackgroundPoller(ctl)
        assert bp._get_interval() == 216.0
        ctl.smart_interval_s = 324
        assert bp._get_interval() == 324.0

    def test_update_interval(self):
        bp = BackgroundPoller(_controller())
        bp.update_interval(10.0)
        assert bp._get_interval() == 10.0
        bp.update_interval(None)
        assert bp._get_interval() == 756.0

    def test_poll_once_records_status(self):
        ctl = _controller()
        ctl.run_cycle.return_value = CycleResult(
            mode=MODE_LIVE_UPDATE,
            status="live update: 6/7 closes refreshed, 1 warning(s)",
            warnings=["quotes: timeout"],
        )
        bp = BackgroundPoller(ctl)
        bp.poll_once()
        assert bp.poll_count == 1
        assert bp.last_poll_status == "live_update: live update: 6/7 closes refreshed, 1 warning(s)"
        assert bp.last_poll_error == "quotes: timeout"
        assert bp.last_poll_ts > 0

    def test_start_and_stop(self):
        ctl = _controller()
        bp = BackgroundPoller(ctl)
        bp.update_interval(0.05)

        bp.start()
        assert bp.is_alive is True
        time.sleep(0.3)
        bp.stop(timeout=1.0)

        assert bp.is_alive is False
        assert bp.poll_count >= 1
        assert ctl.run_cycle.called

    def test_first_cycle_runs_immediately(self):
        ctl = _controller(interval_s=3600)
        bp = BackgroundPoller(ctl)
        bp.start()
        time.sleep(0.2)
        bp.stop(timeout=1.0)
        assert ctl.run_cycle.call_count == 1

    def test_poll_error_handled(self):
        """Errors from a cycle don't crash the thread."""
        ctl = _controller()
        ctl.run_cycle.side_effect = RuntimeError("store exploded apikey=abc123")
        bp = BackgroundPoller(ctl)
        bp.update_interval(0.05)

        bp.start()
        time.sleep(0.3)
        bp.stop(timeout=1.0)

        assert "store exploded" in bp.last_poll_error
        assert "abc123" not in bp.last_poll_error
        assert bp.last_poll_status == "ERROR"
        assert ctl.run_cycle.call_count >= 2

    def test_start_idempotent(self):
        bp = BackgroundPoller(_controller())
        bp.start()
        thread1 = bp._worker
        bp.start()
        thread2 = bp._worker
        assert thread1 is thread2
        bp.stop(timeout=1.0)

    def test_trigger_now_cuts_wait_short(self):
        ctl = _controller(interval_s=3600)
        bp = BackgroundPoller(ctl)
        bp.start()
        time.sleep(0.2)
        assert ctl.run_cycle.call_count == 1
        bp.trigger_now()
        time.sleep(0.2)
        bp.stop(timeout=1.0)
        assert ctl.run_cycle.call_count == 2
        assert bp.last_result.mode == MODE_FRESH

    def test_stop_interrupts_long_wait(self):
        bp = BackgroundPoller(_controller(interval_s=3600))
        bp.start()
        time.sleep(0.1)
        bp.stop(timeout=1.0)
        assert bp.is_alive is False
