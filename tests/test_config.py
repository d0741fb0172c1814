"""Tests for tqqq_phase.config: env handling, smart interval, validation."""

from __future__ import annotations

import os
import unittest
from dataclasses import replace
from unittest.mock import patch

import pytest

from tqqq_phase.config import (
    DEFAULT_SYMBOLS,
    Config,
    compute_smart_interval,
    validate_config,
)


class TestConfigEnvVarsAtInstantiationTime(unittest.TestCase):
    """Env vars are read when Config() is called, not at import."""

    def test_api_key_read_at_init(self):
        with patch.dict(os.environ, {"TWELVE_DATA_API_KEY": "td_key_1"}):
            cfg = Config()
        self.assertEqual(cfg.api_key, "td_key_1")
        self.assertFalse(cfg.read_only)

    def test_api_key_not_in_repr(self):
        with patch.dict(os.environ, {"TWELVE_DATA_API_KEY": "very_secret_key"}):
            cfg = Config()
        self.assertNotIn("very_secret_key", repr(cfg))

    def test_missing_key_means_read_only(self):
        with patch.dict(os.environ, {"TWELVE_DATA_API_KEY": ""}):
            cfg = Config()
        self.assertTrue(cfg.read_only)

    def test_symbols_parsed_upper_and_deduplicated(self):
        with patch.dict(os.environ, {"TQQQ_SYMBOLS": "qqq, tqqq,QQQ,, spy"}):
            cfg = Config()
        self.assertEqual(cfg.symbols, ("QQQ", "TQQQ", "SPY"))

    def test_blank_symbols_fall_back_to_default(self):
        with patch.dict(os.environ, {"TQQQ_SYMBOLS": "  "}):
            cfg = Config()
        self.assertEqual(cfg.symbols, DEFAULT_SYMBOLS)

    def test_bad_numbers_fall_back_to_default(self):
        with patch.dict(os.environ, {
            "TQQQ_SHORT_PERIOD": "abc",
            "TQQQ_HISTORY_TIMEOUT_S": "soon",
        }):
            cfg = Config()
        self.assertEqual(cfg.short_period, 100)
        self.assertEqual(cfg.history_timeout_s, 10.0)

    def test_quote_policy_is_tighter_than_history(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = Config()
        self.assertEqual((cfg.history_retries, cfg.history_timeout_s), (2, 10.0))
        self.assertEqual((cfg.quote_retries, cfg.quote_timeout_s), (1, 5.0))


class TestSmartInterval:
    def test_default_basket_and_budget(self):
        # 7 symbols, 800 requests/day -> ceil(604800 / 800)
        assert compute_smart_interval(7, 800) == 756

    def test_rounds_up(self):
        assert compute_smart_interval(7, 600) == 1008
        assert compute_smart_interval(1, 7) == 12343

    def test_zero_budget_rejected(self):
        with pytest.raises(ValueError):
            compute_smart_interval(7, 0)

    def test_config_property_matches_function(self):
        with patch.dict(os.environ, {"TQQQ_SYMBOLS": "QQQ,TQQQ", "TQQQ_DAILY_REQUEST_BUDGET": "800"}):
            cfg = Config()
        assert cfg.smart_interval_s == compute_smart_interval(2, 800) == 216


class TestValidateConfig:
    @pytest.fixture
    def cfg(self) -> Config:
        with patch.dict(os.environ, {}, clear=True):
            return Config()

    def test_defaults_are_valid(self, cfg):
        assert validate_config(cfg) == []

    def test_anchor_outside_basket(self, cfg):
        problems = validate_config(replace(cfg, anchor_symbol="IWM"))
        assert len(problems) == 1
        assert "IWM" in problems[0]

    def test_short_must_be_shorter(self, cfg):
        problems = validate_config(replace(cfg, short_period=200, long_period=100))
        assert any("shorter" in p for p in problems)

    def test_non_positive_budget(self, cfg):
        problems = validate_config(replace(cfg, daily_request_budget=0))
        assert any("budget" in p for p in problems)

    def test_history_window_must_cover_long_period(self, cfg):
        problems = validate_config(replace(cfg, max_history_points=150))
        assert any("max_history_points" in p for p in problems)
