"""CLI tests for tqqq_phase.run (no network: offline commands, remote fetches patched)."""

from __future__ import annotations

import json
from unittest.mock import patch

import pandas as pd
import pytest

from tqqq_phase import run
from tqqq_phase.errors import NetworkError


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.setenv("TWELVE_DATA_API_KEY", "test_key")
    monkeypatch.setenv("TQQQ_SYMBOLS", "QQQ,TQQQ")
    monkeypatch.setenv("TQQQ_SHORT_PERIOD", "2")
    monkeypatch.setenv("TQQQ_LONG_PERIOD", "3")
    monkeypatch.setenv("TQQQ_SQLITE_PATH", str(tmp_path / "state" / "state.db"))
    return tmp_path


def _snapshot_doc():
    return {
        "version": "v4-full-history",
        "assetStore": {
            "lastUpdate": 1714600000000,
            "data": {
                "QQQ": [{"date": f"2024-05-0{i}", "close": 10 + i} for i in range(1, 5)],
                "TQQQ": [{"date": f"2024-05-0{i}", "close": 30 + i} for i in range(1, 5)],
            },
        },
    }


class TestCli:
    def test_invalid_config_exits_nonzero(self, env, monkeypatch):
        monkeypatch.setenv("TQQQ_ANCHOR_SYMBOL", "IWM")
        assert run.main(["export", str(env / "x.json")]) == 1

    def test_once_needs_api_key(self, env, monkeypatch):
        monkeypatch.setenv("TWELVE_DATA_API_KEY", "")
        assert run.main(["once"]) == 1
        assert run.main(["sync"]) == 1

    def test_import_rejects_bad_document(self, env):
        bad = env / "bad.json"
        bad.write_text(json.dumps({"assetStore": {"data": {}}}))
        assert run.main(["import", str(bad)]) == 1

    def test_import_then_export(self, env):
        src = env / "in.json"
        src.write_text(json.dumps(_snapshot_doc()))
        assert run.main(["import", str(src)]) == 0

        # The imported store was persisted, so a fresh process can export it.
        out = env / "out.json"
        csv = env / "signals.csv"
        assert run.main(["export", str(out), "--csv", str(csv)]) == 0
        doc = json.loads(out.read_text())
        assert len(doc["assetStore"]["data"]["QQQ"]) == 4
        assert len(doc["strategyResults"]) == 4
        assert list(pd.read_csv(csv)["date"]) == ["2024-05-04", "2024-05-03", "2024-05-02", "2024-05-01"]

    def test_import_rejects_undecodable_file(self, env):
        bad = env / "bad.json"
        bad.write_bytes(b"\xff\xfe\x00garbage")
        assert run.main(["import", str(bad)]) == 1

    def test_import_url_fetch_failure(self, env):
        url = "https://example.invalid/data.json"
        with patch("tqqq_phase.scheduler.read_snapshot_document",
                   side_effect=NetworkError("connection refused", url=url)):
            assert run.main(["import", url]) == 1
