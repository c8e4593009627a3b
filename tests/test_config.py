"""Tests for environment parsing helpers in config.py."""

import pytest

from config import get_bool_env, get_float_env, get_int_env


class TestGetIntEnv:
    def test_missing_uses_default(self, monkeypatch):
        monkeypatch.delenv("VIXORA_TEST_INT", raising=False)
        assert get_int_env("VIXORA_TEST_INT", 7) == 7

    def test_valid_value(self, monkeypatch):
        monkeypatch.setenv("VIXORA_TEST_INT", "42")
        assert get_int_env("VIXORA_TEST_INT", 7) == 42

    def test_invalid_value(self, monkeypatch):
        monkeypatch.setenv("VIXORA_TEST_INT", "forty")
        assert get_int_env("VIXORA_TEST_INT", 7) == 7

    @pytest.mark.parametrize("raw", ["0", "101"])
    def test_out_of_range(self, monkeypatch, raw):
        monkeypatch.setenv("VIXORA_TEST_INT", raw)
        assert get_int_env("VIXORA_TEST_INT", 7, min_val=1, max_val=100) == 7


class TestGetFloatEnv:
    def test_valid_value(self, monkeypatch):
        monkeypatch.setenv("VIXORA_TEST_FLOAT", "2.5")
        assert get_float_env("VIXORA_TEST_FLOAT", 1.0) == 2.5

    @pytest.mark.parametrize("raw", ["inf", "nan", "abc"])
    def test_rejected_values(self, monkeypatch, raw):
        monkeypatch.setenv("VIXORA_TEST_FLOAT", raw)
        assert get_float_env("VIXORA_TEST_FLOAT", 1.0) == 1.0

    def test_below_minimum(self, monkeypatch):
        monkeypatch.setenv("VIXORA_TEST_FLOAT", "0.01")
        assert get_float_env("VIXORA_TEST_FLOAT", 1.0, min_val=0.1) == 1.0


class TestGetBoolEnv:
    @pytest.mark.parametrize("raw", ["1", "true", "YES", " on "])
    def test_truthy(self, monkeypatch, raw):
        monkeypatch.setenv("VIXORA_TEST_BOOL", raw)
        assert get_bool_env("VIXORA_TEST_BOOL", False) is True

    @pytest.mark.parametrize("raw", ["0", "false", "off", "nope"])
    def test_falsy(self, monkeypatch, raw):
        monkeypatch.setenv("VIXORA_TEST_BOOL", raw)
        assert get_bool_env("VIXORA_TEST_BOOL", True) is False

    def test_blank_uses_default(self, monkeypatch):
        monkeypatch.setenv("VIXORA_TEST_BOOL", "  ")
        assert get_bool_env("VIXORA_TEST_BOOL", True) is True
