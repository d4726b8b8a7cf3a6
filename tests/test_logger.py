"""Tests for log level resolution and reconfiguration."""

from __future__ import annotations

import logging

import pytest

from mentionbot.logger import configure_logging, resolve_level


@pytest.fixture(autouse=True)
def restore_levels(monkeypatch):
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    yield
    configure_logging()


class TestResolveLevel:
    def test_defaults_to_info(self):
        assert resolve_level() == logging.INFO

    def test_configured_level(self):
        assert resolve_level("debug") == logging.DEBUG

    def test_env_wins_over_configured(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        assert resolve_level("DEBUG") == logging.ERROR

    def test_unknown_name_falls_back_to_info(self):
        assert resolve_level("LOUD") == logging.INFO


class TestConfigureLogging:
    def test_config_level_applies_to_root(self):
        assert configure_logging("WARNING") == logging.WARNING
        assert logging.getLogger().level == logging.WARNING

    def test_env_keeps_precedence(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        configure_logging("ERROR")
        assert logging.getLogger().level == logging.DEBUG

    def test_whatsmeow_held_at_warning_unless_debugging(self):
        configure_logging("INFO")
        assert logging.getLogger("whatsmeow").level == logging.WARNING
        assert logging.getLogger("Whatsmeow").level == logging.WARNING

        configure_logging("DEBUG")
        assert logging.getLogger("whatsmeow").level == logging.DEBUG
