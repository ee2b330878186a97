"""Tests for configuration loading."""

from pathlib import Path

import pytest

from p2p_settlement.config import (
    ConfigValidationError,
    create_default_config,
    load_config,
)

ENV_VARS = (
    "PAYOUT_PLATFORM_URL",
    "PAYOUT_PLATFORM_TOKEN",
    "TRADING_PLATFORM_URL",
    "TRADING_API_KEY",
    "TRADING_API_SECRET",
    "MAILBOX_ACCESS_TOKEN",
    "SETTLEMENT_GRACE_PERIOD_SECONDS",
    "STATE_DB_PATH",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config.matching.amount_tolerance == 100
        assert config.settlement.grace_period_seconds == 120
        assert config.settlement.release_interval_seconds == 2
        assert config.mailbox.accounts == []
        assert config.state_db_path == Path("data/state.db")

    def test_default_file_roundtrip(self, tmp_path):
        """The generated default config loads and matches the built-in defaults."""
        path = tmp_path / "config.yaml"
        create_default_config(path)

        config = load_config(path)

        assert config.mailbox.accounts[0].email == "receipts@example.com"
        assert config.mailbox.bank_sender == "noreply@tinkoff.ru"
        assert config.monitor.statuses == [1, 5]
        assert config.trading_platform.recv_window == 5000
        assert config.validate() == []

    def test_mailbox_accounts_as_strings(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("mailbox:\n  accounts:\n    - a@example.com\n", encoding="utf-8")

        config = load_config(path)

        assert config.mailbox.accounts[0].email == "a@example.com"
        assert config.mailbox.accounts[0].access_token == ""

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        create_default_config(path)
        monkeypatch.setenv("TRADING_API_SECRET", "from-env")
        monkeypatch.setenv("MAILBOX_ACCESS_TOKEN", "mail-env")
        monkeypatch.setenv("SETTLEMENT_GRACE_PERIOD_SECONDS", "300")
        monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "env.db"))

        config = load_config(path)

        assert config.trading_platform.api_secret == "from-env"
        assert config.mailbox.accounts[0].access_token == "mail-env"
        assert config.settlement.grace_period_seconds == 300
        assert config.state_db_path == tmp_path / "env.db"

    def test_unparseable_env_int_keeps_value(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SETTLEMENT_GRACE_PERIOD_SECONDS", "soon")
        config = load_config(tmp_path / "missing.yaml")
        assert config.settlement.grace_period_seconds == 120

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigValidationError):
            load_config(path)

    def test_section_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("matching: 5\n", encoding="utf-8")

        with pytest.raises(ConfigValidationError, match="matching"):
            load_config(path)

    def test_invalid_account_entry(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("mailbox:\n  accounts:\n    - {token: x}\n", encoding="utf-8")

        with pytest.raises(ConfigValidationError):
            load_config(path)


class TestValidate:
    def test_valid(self, config):
        assert config.validate() == []

    def test_negative_tolerance(self, config):
        config.matching.amount_tolerance = -1
        assert "matching.amount_tolerance must be >= 0" in config.validate()

    def test_non_positive_intervals(self, config):
        config.settlement.grace_period_seconds = 0
        config.monitor.interval_seconds = 0

        errors = config.validate()

        assert "settlement.grace_period_seconds must be > 0" in errors
        assert "monitor.interval_seconds must be > 0" in errors

    def test_mailbox_without_token(self, config):
        config.mailbox.accounts[0].access_token = ""
        assert config.validate() == ["mailbox account receipts@example.com has no access_token"]
