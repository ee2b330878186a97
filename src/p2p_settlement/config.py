"""
Configuration management (SSOT).

This module defines ALL configuration for the settlement pipeline.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Secrets (tokens, API keys) may come from the environment instead of the file
- Intervals and the grace period are positive
- The amount tolerance is never negative
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class MailboxAccountConfig:
    """One mailbox that receives bank notifications."""

    email: str
    access_token: str = ""


@dataclass
class MailboxConfig:
    """Mailbox scanning settings."""

    base_url: str = "https://gmail.googleapis.com"
    accounts: list[MailboxAccountConfig] = field(default_factory=list)
    # Only messages from this sender are considered
    bank_sender: str = "noreply@tinkoff.ru"
    look_back_days: int = 7
    max_per_cycle: int = 50
    scan_interval_seconds: int = 300


@dataclass
class MatchingConfig:
    """Receipt-to-payout matching rules."""

    # Maximum |receipt amount - payout amount| for a match (inclusive)
    amount_tolerance: int = 100
    # Payout status meaning "waiting for a receipt"
    pending_payout_status: int = 5
    # Key into payout amount_trader (ISO 4217 numeric, 643 = RUB)
    currency_code: str = "643"


@dataclass
class SettlementConfig:
    """Approval and timed release settings."""

    # Minimum time between approval and asset release
    grace_period_seconds: int = 120
    release_interval_seconds: int = 2
    approval_retry_interval_seconds: int = 60
    # Timeout for each external platform call
    call_timeout_seconds: int = 30
    approved_payout_status: int = 1
    # Chat message sent to the counterparty after approval (empty = none)
    post_match_message: str = "Платеж получен, средства будут отправлены в течение нескольких минут."
    delete_advertisement: bool = True


@dataclass
class MonitorConfig:
    """Payout platform status monitor settings."""

    enabled: bool = True
    interval_seconds: int = 60
    # Remote statuses to poll (1 = pending, 5 = in process)
    statuses: list[int] = field(default_factory=lambda: [1, 5])
    page_size: int = 100


@dataclass
class PayoutPlatformConfig:
    """Payout platform API."""

    base_url: str
    token: str = ""
    # Accounts watched by the status monitor
    accounts: list[str] = field(default_factory=list)


@dataclass
class TradingPlatformConfig:
    """Trading platform API."""

    base_url: str
    api_key: str = ""
    api_secret: str = ""
    recv_window: int = 5000


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    payout_platform: PayoutPlatformConfig
    trading_platform: TradingPlatformConfig
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/state.db"))
    pdf_storage_path: Path = field(default_factory=lambda: Path("data/receipts"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if not self.payout_platform.base_url:
            errors.append("payout_platform.base_url is required")
        if not self.trading_platform.base_url:
            errors.append("trading_platform.base_url is required")

        if self.matching.amount_tolerance < 0:
            errors.append("matching.amount_tolerance must be >= 0")

        if self.settlement.grace_period_seconds <= 0:
            errors.append("settlement.grace_period_seconds must be > 0")
        if self.settlement.call_timeout_seconds <= 0:
            errors.append("settlement.call_timeout_seconds must be > 0")

        for name, value in (
            ("mailbox.scan_interval_seconds", self.mailbox.scan_interval_seconds),
            ("settlement.release_interval_seconds", self.settlement.release_interval_seconds),
            (
                "settlement.approval_retry_interval_seconds",
                self.settlement.approval_retry_interval_seconds,
            ),
            ("monitor.interval_seconds", self.monitor.interval_seconds),
        ):
            if value <= 0:
                errors.append(f"{name} must be > 0")

        for account in self.mailbox.accounts:
            if not account.access_token:
                errors.append(f"mailbox account {account.email} has no access_token")

        return errors


def _env_int(name: str, default: int) -> int:
    """Integer from environment; unparseable values keep the default."""
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _section(data: dict, name: str) -> dict:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigValidationError(f"'{name}' must be a mapping")
    return value


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - PAYOUT_PLATFORM_URL
    - PAYOUT_PLATFORM_TOKEN
    - TRADING_PLATFORM_URL
    - TRADING_API_KEY
    - TRADING_API_SECRET
    - MAILBOX_ACCESS_TOKEN (token of the first mailbox account)
    - SETTLEMENT_GRACE_PERIOD_SECONDS
    - STATE_DB_PATH

    Raises:
        ConfigValidationError: If the file structure is malformed
    """
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    if not isinstance(data, dict):
        raise ConfigValidationError("Config root must be a mapping")

    # Mailbox config
    mailbox_data = _section(data, "mailbox")
    accounts = []
    for entry in mailbox_data.get("accounts") or []:
        if isinstance(entry, str):
            accounts.append(MailboxAccountConfig(email=entry))
        elif isinstance(entry, dict) and entry.get("email"):
            accounts.append(
                MailboxAccountConfig(
                    email=entry["email"],
                    access_token=entry.get("access_token", ""),
                )
            )
        else:
            raise ConfigValidationError(f"Invalid mailbox account entry: {entry!r}")

    token_env = os.environ.get("MAILBOX_ACCESS_TOKEN")
    if token_env and accounts:
        accounts[0].access_token = token_env

    mailbox = MailboxConfig(
        base_url=mailbox_data.get("base_url", "https://gmail.googleapis.com"),
        accounts=accounts,
        bank_sender=mailbox_data.get("bank_sender", "noreply@tinkoff.ru"),
        look_back_days=mailbox_data.get("look_back_days", 7),
        max_per_cycle=mailbox_data.get("max_per_cycle", 50),
        scan_interval_seconds=mailbox_data.get("scan_interval_seconds", 300),
    )

    # Matching config
    matching_data = _section(data, "matching")
    matching = MatchingConfig(
        amount_tolerance=matching_data.get("amount_tolerance", 100),
        pending_payout_status=matching_data.get("pending_payout_status", 5),
        currency_code=str(matching_data.get("currency_code", "643")),
    )

    # Settlement config
    settlement_data = _section(data, "settlement")
    defaults = SettlementConfig()
    settlement = SettlementConfig(
        grace_period_seconds=_env_int(
            "SETTLEMENT_GRACE_PERIOD_SECONDS",
            settlement_data.get("grace_period_seconds", defaults.grace_period_seconds),
        ),
        release_interval_seconds=settlement_data.get(
            "release_interval_seconds", defaults.release_interval_seconds
        ),
        approval_retry_interval_seconds=settlement_data.get(
            "approval_retry_interval_seconds", defaults.approval_retry_interval_seconds
        ),
        call_timeout_seconds=settlement_data.get(
            "call_timeout_seconds", defaults.call_timeout_seconds
        ),
        approved_payout_status=settlement_data.get(
            "approved_payout_status", defaults.approved_payout_status
        ),
        post_match_message=settlement_data.get("post_match_message", defaults.post_match_message),
        delete_advertisement=settlement_data.get(
            "delete_advertisement", defaults.delete_advertisement
        ),
    )

    # Monitor config
    monitor_data = _section(data, "monitor")
    monitor = MonitorConfig(
        enabled=monitor_data.get("enabled", True),
        interval_seconds=monitor_data.get("interval_seconds", 60),
        statuses=[int(s) for s in monitor_data.get("statuses", [1, 5])],
        page_size=monitor_data.get("page_size", 100),
    )

    # Platforms
    payout_data = _section(data, "payout_platform")
    payout_platform = PayoutPlatformConfig(
        base_url=os.environ.get(
            "PAYOUT_PLATFORM_URL", payout_data.get("base_url", "http://localhost:8081")
        ),
        token=os.environ.get("PAYOUT_PLATFORM_TOKEN", payout_data.get("token", "")),
        accounts=[str(a) for a in payout_data.get("accounts", [])],
    )

    trading_data = _section(data, "trading_platform")
    trading_platform = TradingPlatformConfig(
        base_url=os.environ.get(
            "TRADING_PLATFORM_URL", trading_data.get("base_url", "https://api.bybit.com")
        ),
        api_key=os.environ.get("TRADING_API_KEY", trading_data.get("api_key", "")),
        api_secret=os.environ.get("TRADING_API_SECRET", trading_data.get("api_secret", "")),
        recv_window=trading_data.get("recv_window", 5000),
    )

    return Config(
        payout_platform=payout_platform,
        trading_platform=trading_platform,
        mailbox=mailbox,
        matching=matching,
        settlement=settlement,
        monitor=monitor,
        state_db_path=Path(
            os.environ.get("STATE_DB_PATH", data.get("state_db_path", "data/state.db"))
        ),
        pdf_storage_path=Path(data.get("pdf_storage_path", "data/receipts")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# P2P settlement pipeline configuration
#
# Secrets can be supplied via environment variables instead:
# PAYOUT_PLATFORM_TOKEN, TRADING_API_KEY, TRADING_API_SECRET, MAILBOX_ACCESS_TOKEN

mailbox:
  base_url: "https://gmail.googleapis.com"
  accounts:
    - email: "receipts@example.com"
      access_token: "YOUR_MAILBOX_ACCESS_TOKEN"
  bank_sender: "noreply@tinkoff.ru"      # Only bank notifications are scanned
  look_back_days: 7
  max_per_cycle: 50
  scan_interval_seconds: 300

matching:
  amount_tolerance: 100                   # Max difference between receipt and payout
  pending_payout_status: 5                # Payout status awaiting a receipt
  currency_code: "643"                    # Key in payout amount_trader (RUB)

settlement:
  grace_period_seconds: 120               # Wait after approval before releasing
  release_interval_seconds: 2
  approval_retry_interval_seconds: 60
  call_timeout_seconds: 30                # Per external call
  approved_payout_status: 1
  post_match_message: "Платеж получен, средства будут отправлены в течение нескольких минут."
  delete_advertisement: true

monitor:
  enabled: true
  interval_seconds: 60
  statuses: [1, 5]
  page_size: 100

payout_platform:
  base_url: "http://localhost:8081"
  token: "YOUR_PAYOUT_PLATFORM_TOKEN"
  accounts: []

trading_platform:
  base_url: "https://api.bybit.com"
  api_key: "YOUR_API_KEY"
  api_secret: "YOUR_API_SECRET"
  recv_window: 5000

# Storage
state_db_path: "data/state.db"
pdf_storage_path: "data/receipts"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        f.write(default_config)
