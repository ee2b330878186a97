"""Payout platform transaction status monitor.

Polls the platform for transactions in a few interesting statuses, mirrors
them locally and reports what is new or changed. Read-mostly: the only write
outside the mirror is the status of a local payout with the same platform id.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..state_store.records import RemoteTransactionRecord

if TYPE_CHECKING:
    from ..config import MonitorConfig
    from ..payout_client import PayoutClient
    from ..state_store.repositories import PayoutRepository, RemoteTransactionRepository

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT = "default"


@dataclass
class MonitorSummary:
    """Result of one monitor pass for one account."""

    account: str
    fetched: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list[str] = field(default_factory=list)


Notifier = Callable[[MonitorSummary, list[dict], list[dict]], None]


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def record_from_remote(account: str, item: dict[str, Any]) -> RemoteTransactionRecord:
    """Map a platform transaction dict onto the mirror record."""
    return RemoteTransactionRecord(
        account=account,
        remote_id=str(item["id"]),
        status=_to_int(item.get("status")),
        status_text=item.get("status_text"),
        amount=_to_float(item.get("amount")),
        amount_usdt=_to_float(item.get("amount_usdt")),
        fee=_to_float(item.get("fee")),
        fee_usdt=_to_float(item.get("fee_usdt")),
        tx_hash=item.get("tx_hash"),
        description=item.get("description"),
        raw=item,
    )


class TransactionStatusMonitor:
    """Mirrors payout platform transactions and reports changes.

    A failing account is skipped for the cycle; the others still run.
    Notifier errors are logged and never stop the pass.
    """

    def __init__(
        self,
        payout_client: PayoutClient,
        remote_transactions: RemoteTransactionRepository,
        payouts: PayoutRepository,
        config: MonitorConfig,
        accounts: list[str] | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.client = payout_client
        self.remote = remote_transactions
        self.payouts = payouts
        self.config = config
        self.accounts = accounts or []
        self.notifier = notifier

    def check_all(self) -> list[MonitorSummary]:
        """Run one pass over every account."""
        accounts: list[str | None] = list(self.accounts) or [None]
        return [self.check_account(account) for account in accounts]

    def check_account(self, account: str | None) -> MonitorSummary:
        label = account or DEFAULT_ACCOUNT
        summary = MonitorSummary(account=label)
        new_items: list[dict] = []
        updated_items: list[dict] = []

        try:
            items = list(
                self.client.iter_transactions(
                    self.config.statuses, account=account, page_size=self.config.page_size
                )
            )
        except Exception as e:
            logger.error("Status monitor: fetching transactions for %s failed: %s", label, e)
            summary.errors.append(str(e))
            return summary

        summary.fetched = len(items)

        for item in items:
            if item.get("id") is None:
                continue
            try:
                incoming = record_from_remote(label, item)
                existing = self.remote.get_remote_transaction(label, incoming.remote_id)

                if existing is None:
                    self.remote.save_remote_transaction(incoming)
                    summary.new += 1
                    new_items.append(incoming.to_dict())
                else:
                    changed = incoming.changed_fields(existing)
                    if not changed:
                        self.remote.touch_remote_transaction(label, incoming.remote_id)
                        summary.unchanged += 1
                        continue
                    self.remote.save_remote_transaction(incoming)
                    summary.updated += 1
                    data = incoming.to_dict()
                    data["changed_fields"] = changed
                    updated_items.append(data)
                    logger.info(
                        "Remote transaction %s/%s changed: %s",
                        label,
                        incoming.remote_id,
                        ", ".join(changed),
                    )

                self._sync_local_payout(incoming)
            except Exception as e:
                logger.warning("Status monitor: record %s failed: %s", item.get("id"), e)
                summary.errors.append(f"{item.get('id')}: {e}")

        if (new_items or updated_items) and self.notifier is not None:
            try:
                self.notifier(summary, new_items, updated_items)
            except Exception as e:
                logger.warning("Status monitor notifier failed: %s", e)

        logger.info(
            "Status monitor %s: %d fetched, %d new, %d updated",
            label,
            summary.fetched,
            summary.new,
            summary.updated,
        )
        return summary

    def _sync_local_payout(self, record: RemoteTransactionRecord) -> None:
        if record.status is None:
            return
        payout = self.payouts.get_payout_by_platform_id(record.remote_id)
        if payout is not None and payout.status != record.status:
            logger.info(
                "Payout %s status %s -> %s (platform)",
                payout.platform_payout_id,
                payout.status,
                record.status,
            )
            self.payouts.update_payout_status(payout.id, record.status)
