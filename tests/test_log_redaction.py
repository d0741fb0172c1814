"""Tests for tqqq_phase.log_redaction."""
from __future__ import annotations

import logging

from tqqq_phase.log_redaction import (
    REDACTED,
    LogRedactionFilter,
    apply_global_log_redaction,
    redact_secrets,
)

HEX_KEY = "0123456789abcdef0123456789abcdef"


class TestRedactSecrets:
    def test_query_string_key(self):
        out = redact_secrets("GET https://api.twelvedata.com/quote?symbol=QQQ&apikey=abc123")
        assert "abc123" not in out
        assert "symbol=QQQ" in out

    def test_env_assignment(self):
        assert "xyz789" not in redact_secrets("TWELVE_DATA_API_KEY=xyz789")

    def test_bare_hex_key(self):
        assert HEX_KEY not in redact_secrets(f"using key {HEX_KEY} for requests")

    def test_configured_secret_literal(self):
        out = redact_secrets("upstream echoed Zk93-kq81-pp", secrets=["Zk93-kq81-pp"])
        assert out == f"upstream echoed {REDACTED}"

    def test_short_secret_ignored(self):
        assert redact_secrets("QQQ up", secrets=["Q"]) == "QQQ up"

    def test_plain_text_untouched(self):
        msg = "Loading history [QQQ] (1/7)"
        assert redact_secrets(msg) == msg

    def test_empty(self):
        assert redact_secrets("") == ""


class TestLogRedactionFilter:
    def _record(self, msg, args):
        return logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)

    def test_redacts_rendered_message(self):
        rec = self._record("fetch %s failed", ("https://x/q?apikey=secret1",))
        assert LogRedactionFilter().filter(rec) is True
        assert "secret1" not in rec.getMessage()
        assert rec.getMessage().startswith("fetch https://x/q?")

    def test_clean_record_left_alone(self):
        rec = self._record("%d symbols, F&G=%s", (7, None))
        LogRedactionFilter().filter(rec)
        assert rec.args == (7, None)
        assert rec.getMessage() == "7 symbols, F&G=None"

    def test_configured_secret(self):
        rec = self._record("key is %s", ("Zk93-kq81-pp",))
        LogRedactionFilter(secrets=["Zk93-kq81-pp"]).filter(rec)
        assert rec.getMessage() == f"key is {REDACTED}"

    def test_apply_global_attaches_to_root_handlers(self):
        root = logging.getLogger()
        handler = logging.NullHandler()
        root.addHandler(handler)
        try:
            filt = apply_global_log_redaction(secrets=["abcdef123"])
            assert filt in handler.filters
            assert filt.secrets == ("abcdef123",)
        finally:
            root.removeHandler(handler)
