"""
Tests for environment-driven server configuration.

Run with: pytest test_config.py -v
"""

import pytest

from config import DiscountCodes, ServerConfig, TurnTiming, get_env_bool, get_env_int, get_env_list


class TestEnvHelpers:

    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("off", False), ("maybe", None)])
    def test_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("FLAG", raw)
        assert get_env_bool("FLAG", default=None) is expected

    def test_int_falls_back_on_garbage(self, monkeypatch):
        monkeypatch.setenv("NUM", "twelve")
        assert get_env_int("NUM", 7) == 7

    def test_list(self, monkeypatch):
        monkeypatch.setenv("ORIGINS", " https://a.example , ,https://b.example")
        assert get_env_list("ORIGINS", []) == ["https://a.example", "https://b.example"]
        monkeypatch.setenv("ORIGINS", "")
        assert get_env_list("ORIGINS", ["x"]) == ["x"]


class TestServerConfig:

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        monkeypatch.setenv("STREAK_AUTHORITY", "TOKEN")
        monkeypatch.setenv("DISCOUNT_CODE_10", "ACES10")
        monkeypatch.setenv("COMPUTER_TURN_DELAY_MS", "250")
        monkeypatch.setenv("HAND_SIZE", "5")

        cfg = ServerConfig.from_env()

        assert cfg.ENVIRONMENT == "production"
        assert cfg.STREAK_AUTHORITY == "token"
        assert cfg.discount_codes.for_percent(10) == "ACES10"
        assert cfg.timing.computer_turn == 0.25
        assert cfg.HAND_SIZE == 5

    def test_discount_code_lookup(self):
        codes = DiscountCodes(FIVE="A", TEN="B", FIFTEEN="C")
        assert [codes.for_percent(p) for p in (5, 10, 15, 20)] == ["A", "B", "C", ""]

    def test_instant_timing(self):
        timing = TurnTiming.instant()
        assert (timing.computer_turn, timing.status_message, timing.game_end) == (0, 0, 0)
