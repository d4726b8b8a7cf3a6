"""Tests for configuration loading and validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from mentionbot import config
from mentionbot.config import (
    BotConfig,
    DispatchConfig,
    PairingConfig,
    ReconnectConfig,
    Settings,
    get_settings,
    reset_settings,
)


class TestBotConfig:
    def test_defaults(self):
        bot = BotConfig()
        assert bot.prefix == "!"
        assert bot.tagall_command == "tagall"
        assert bot.subgroup_prefix == "tag"
        assert bot.owners == []

    def test_owners_are_normalized_and_deduped(self):
        bot = BotConfig(owners=["+919800000010", "919800000010@s.whatsapp.net", "919800000011"])
        assert bot.owners == ["919800000010", "919800000011"]

    def test_owner_without_number_is_rejected(self):
        with pytest.raises(ValidationError):
            BotConfig(owners=["alice"])

    @pytest.mark.parametrize("prefix", ["", "!!", " "])
    def test_prefix_must_be_single_char(self, prefix):
        with pytest.raises(ValidationError):
            BotConfig(prefix=prefix)

    def test_command_words_lowercased(self):
        bot = BotConfig(tagall_command="Everyone", subgroup_prefix=" Ping ")
        assert bot.tagall_command == "everyone"
        assert bot.subgroup_prefix == "ping"

    def test_empty_subgroup_prefix_rejected(self):
        with pytest.raises(ValidationError):
            BotConfig(subgroup_prefix="  ")

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            BotConfig(prefx="!")


class TestSectionValidation:
    def test_phone_hint_keeps_digits(self):
        assert PairingConfig(phone_hint="+91 99000-00001").phone_hint == "919900000001"

    def test_blank_phone_hint_is_none(self):
        assert PairingConfig(phone_hint="   ").phone_hint is None

    def test_batch_size_clamped(self):
        assert DispatchConfig(batch_size=0).batch_size == 1
        assert DispatchConfig(delay_ms=-5).delay_ms == 0

    def test_reconnect_defaults(self):
        r = ReconnectConfig()
        assert (r.floor, r.growth, r.ceiling, r.invalid_session_delay) == (1.0, 1.5, 15.0, 2.0)

    @pytest.mark.parametrize(
        "kwargs",
        [{"floor": 0}, {"growth": 0.5}, {"floor": 5.0, "ceiling": 2.0}],
    )
    def test_reconnect_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            ReconnectConfig(**kwargs)


class TestSettingsSources:
    @pytest.fixture(autouse=True)
    def _isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        for var in ("PORT", "BOT__PREFIX", "PAIRING__PHONE_HINT", "DISPATCH__BATCH_SIZE"):
            monkeypatch.delenv(var, raising=False)

    def test_reads_config_toml(self, tmp_path):
        (tmp_path / "config.toml").write_text(
            '[bot]\nprefix = "/"\nowners = ["+919800000010"]\n\n[dispatch]\nbatch_size = 5\n'
        )
        s = Settings()
        assert s.bot.prefix == "/"
        assert s.bot.owners == ["919800000010"]
        assert s.dispatch.batch_size == 5

    def test_env_overrides_toml(self, tmp_path, monkeypatch):
        (tmp_path / "config.toml").write_text("[dispatch]\nbatch_size = 5\n")
        monkeypatch.setenv("DISPATCH__BATCH_SIZE", "7")
        monkeypatch.setenv("PAIRING__PHONE_HINT", "919900000001")
        s = Settings()
        assert s.dispatch.batch_size == 7
        assert s.pairing.phone_hint == "919900000001"

    def test_paths_relative_to_cwd(self, tmp_path):
        s = Settings()
        assert s.auth_dir == (tmp_path / "auth_info").resolve()
        assert s.registry_path == (tmp_path / "data" / "subgroups.json").resolve()

    def test_port_env_wins(self, monkeypatch):
        monkeypatch.setenv("PORT", "8080")
        assert Settings().http_port == 8080

    def test_port_from_config(self):
        assert Settings().http_port == 3000


class TestSingleton:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reset_settings_clears_cache(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        before = get_settings()
        reset_settings()
        assert config._settings is None
        assert get_settings() is not before
