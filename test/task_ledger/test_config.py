"""
Tests for environment-driven settings.
"""

import logging

import pytest

from task_ledger.config import DEFAULT_DB_PATH, DEFAULT_PAGE_SIZE, LedgerSettings, configure_logging

ENV_VARS = (
    "DATABASE_PATH",
    "LEDGER_LOG_LEVEL",
    "LEDGER_PAGE_SIZE",
    "LEDGER_MAX_PAGE_SIZE",
    "LEDGER_HOST",
    "LEDGER_PORT",
)


class TestLedgerSettings:

    @pytest.fixture(autouse=True)
    def clean_environment(self, monkeypatch):
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        settings = LedgerSettings.from_env()
        assert settings.database_path == DEFAULT_DB_PATH
        assert settings.page_size == DEFAULT_PAGE_SIZE
        assert settings.log_level == "INFO"
        assert settings.port == 8000

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DATABASE_PATH", "/tmp/ledger-test.db")
        monkeypatch.setenv("LEDGER_LOG_LEVEL", "debug")
        monkeypatch.setenv("LEDGER_PAGE_SIZE", "10")
        monkeypatch.setenv("LEDGER_MAX_PAGE_SIZE", "20")
        monkeypatch.setenv("LEDGER_PORT", "9100")

        settings = LedgerSettings.from_env()
        assert settings.database_path == "/tmp/ledger-test.db"
        assert settings.log_level == "DEBUG"
        assert settings.page_size == 10
        assert settings.max_page_size == 20
        assert settings.port == 9100

    def test_non_numeric_page_size(self, monkeypatch):
        monkeypatch.setenv("LEDGER_PAGE_SIZE", "lots")
        with pytest.raises(ValueError):
            LedgerSettings.from_env()


def test_configure_logging_accepts_unknown_level():
    # Falls back to INFO instead of failing
    configure_logging("not-a-level")
    assert logging.getLogger("task_ledger").getEffectiveLevel() <= logging.WARNING
