"""Tests for environment-driven configuration helpers."""

import pytest

from stock_notifier import config


class TestParsers:

    @pytest.mark.parametrize("raw,expected", [("1", True), ("true", True), ("YES", True), ("no", False)])
    def test_parse_bool(self, raw, expected):
        assert config._parse_bool(raw) is expected

    def test_parse_bool_default(self):
        assert config._parse_bool(None, True) is True

    def test_invalid_numbers_fall_back(self):
        assert config._parse_int("abc", 5) == 5
        assert config._parse_float("1.5x", 10.0) == 10.0
        assert config._parse_int("7", 5) == 7


class TestValidate:

    def test_missing_token_is_fatal(self, monkeypatch):
        monkeypatch.setattr(config, "PAGE_ACCESS_TOKEN", None)
        with pytest.raises(RuntimeError):
            config.validate()

    def test_valid(self, monkeypatch):
        monkeypatch.setattr(config, "PAGE_ACCESS_TOKEN", "token")
        config.validate()
