"""Tests for tqqq_phase._http: sanitising and the retrying fetch executor."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock, call, patch

import httpx
import pytest

from tqqq_phase._http import FetchExecutor, sanitize_exc, sanitize_url
from tqqq_phase.errors import FetchError, HttpError, MalformedPayload, NetworkError, RateLimited

URL = "https://api.twelvedata.com/time_series"


def _mock_response(data: Any, status_code: int = 200) -> MagicMock:
    r = MagicMock(spec=httpx.Response)
    r.status_code = status_code
    r.json.return_value = data
    r.headers = {"content-type": "application/json"}
    r.url = f"{URL}?symbol=QQQ&apikey=abc123"
    return r


def _non_json_response() -> MagicMock:
    r = _mock_response(None)
    r.headers = {"content-type": "text/html"}
    r.json.side_effect = json.JSONDecodeError("Expecting value", "<html>", 0)
    return r


def _executor(*responses) -> tuple[FetchExecutor, MagicMock]:
    client = MagicMock()
    client.get.side_effect = list(responses)
    return FetchExecutor(client, retry_delay_s=1.0, rate_limit_backoff_s=3.0), client


class TestSanitize:
    def test_apikey_masked(self):
        assert sanitize_url("https://x/q?symbol=QQQ&apikey=abc123") == "https://x/q?symbol=QQQ&apikey=***"

    def test_exception_text_masked(self):
        exc = RuntimeError("GET https://x/q?token=secret failed")
        assert "secret" not in sanitize_exc(exc)


class TestFetchExecutorSuccess:
    def test_returns_parsed_json(self):
        ex, client = _executor(_mock_response({"values": []}))
        with patch("tqqq_phase._http.time.sleep") as sleep:
            assert ex.execute(URL, {"symbol": "QQQ"}) == {"values": []}
        sleep.assert_not_called()
        client.get.assert_called_once_with(URL, params={"symbol": "QQQ"}, timeout=10.0)

    def test_passes_timeout(self):
        ex, client = _executor(_mock_response({}))
        ex.execute(URL, max_retries=1, timeout_s=5.0)
        assert client.get.call_args.kwargs["timeout"] == 5.0

    def test_recovers_after_transient_failure(self):
        ex, client = _executor(httpx.ConnectError("refused"), _mock_response({"ok": True}))
        with patch("tqqq_phase._http.time.sleep") as sleep:
            assert ex.execute(URL, max_retries=2) == {"ok": True}
        sleep.assert_called_once_with(1.0)
        assert client.get.call_count == 2


class TestFetchExecutorFailures:
    def test_timeout_becomes_network_error(self):
        ex, client = _executor(httpx.ReadTimeout("slow"))
        with pytest.raises(NetworkError, match="timeout"):
            ex.execute(URL, max_retries=1)

    def test_non_2xx_becomes_http_error(self):
        ex, _ = _executor(_mock_response({}, status_code=503))
        with pytest.raises(HttpError) as info:
            ex.execute(URL, max_retries=1)
        assert info.value.status == 503
        assert "abc123" not in info.value.url

    def test_non_json_body_is_malformed(self):
        ex, _ = _executor(_non_json_response())
        with pytest.raises(MalformedPayload):
            ex.execute(URL, max_retries=1)

    def test_error_envelope_becomes_http_error(self):
        body = {"status": "error", "code": 400, "message": "symbol not found"}
        ex, _ = _executor(_mock_response(body))
        with pytest.raises(HttpError) as info:
            ex.execute(URL, max_retries=1)
        assert info.value.status == 400
        assert "symbol not found" in str(info.value)

    def test_all_attempts_fail_raises_last_error(self):
        ex, client = _executor(
            httpx.ConnectError("refused"),
            _mock_response({}, status_code=502),
        )
        with patch("tqqq_phase._http.time.sleep"):
            with pytest.raises(HttpError):
                ex.execute(URL, max_retries=2)
        assert client.get.call_count == 2

    def test_no_sleep_after_final_attempt(self):
        ex, client = _executor(*[httpx.ConnectError("down")] * 3)
        with patch("tqqq_phase._http.time.sleep") as sleep:
            with pytest.raises(NetworkError):
                ex.execute(URL, max_retries=3)
        assert client.get.call_count == 3
        assert sleep.call_count == 2

    def test_zero_retries_still_attempts_once(self):
        ex, client = _executor(_mock_response({"ok": 1}))
        assert ex.execute(URL, max_retries=0) == {"ok": 1}
        assert client.get.call_count == 1

    def test_all_failures_are_fetch_errors(self):
        for exc in (NetworkError, HttpError, RateLimited, MalformedPayload):
            assert issubclass(exc, FetchError)


class TestRateLimitBackoff:
    def test_envelope_429_backs_off_linearly(self):
        throttled = {"status": "error", "code": 429, "message": "run out of API credits"}
        ex, client = _executor(
            _mock_response(throttled),
            _mock_response(throttled),
            _mock_response(throttled),
        )
        with patch("tqqq_phase._http.time.sleep") as sleep:
            with pytest.raises(RateLimited):
                ex.execute(URL, max_retries=3)
        assert sleep.call_args_list == [call(3.0), call(6.0)]
        assert client.get.call_count == 3

    def test_http_429_then_success(self):
        ex, _ = _executor(_mock_response({}, status_code=429), _mock_response({"ok": True}))
        with patch("tqqq_phase._http.time.sleep") as sleep:
            assert ex.execute(URL, max_retries=2) == {"ok": True}
        sleep.assert_called_once_with(3.0)

    def test_rate_limit_counts_against_retries(self):
        ex, client = _executor(_mock_response({}, status_code=429), _mock_response({"ok": True}))
        with patch("tqqq_phase._http.time.sleep") as sleep:
            with pytest.raises(RateLimited):
                ex.execute(URL, max_retries=1)
        sleep.assert_not_called()
        assert client.get.call_count == 1
