"""Tests for the payout platform status monitor."""

from unittest.mock import MagicMock

import pytest

from p2p_settlement.config import MonitorConfig
from p2p_settlement.payout_client import PayoutPlatformConnectionError
from p2p_settlement.services import TransactionStatusMonitor
from p2p_settlement.services.status_monitor import record_from_remote


def _item(remote_id, status=5, amount="4500.00", **extra):
    item = {"id": remote_id, "status": status, "amount": amount, "status_text": "in process"}
    item.update(extra)
    return item


@pytest.fixture
def payout_client():
    return MagicMock()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def make_monitor(store, payout_client, notifier):
    def _make(accounts=None):
        return TransactionStatusMonitor(
            payout_client=payout_client,
            remote_transactions=store,
            payouts=store,
            config=MonitorConfig(),
            accounts=accounts,
            notifier=notifier,
        )

    return _make


class TestRecordFromRemote:
    def test_coerces_numbers(self):
        record = record_from_remote("acc-1", _item(42, status="1", amount="12.5", fee=""))

        assert record.remote_id == "42"
        assert record.status == 1
        assert record.amount == 12.5
        assert record.fee is None

    def test_bad_numbers_become_none(self):
        record = record_from_remote("acc-1", _item(1, status="n/a", amount="lots"))
        assert record.status is None
        assert record.amount is None


class TestMonitor:
    """One monitor pass."""

    def test_new_transactions(self, make_monitor, store, payout_client, notifier):
        payout_client.iter_transactions.return_value = iter([_item(1), _item(2)])

        [summary] = make_monitor(["acc-1"]).check_all()

        assert summary.account == "acc-1"
        assert summary.fetched == 2
        assert summary.new == 2
        assert store.get_remote_transaction("acc-1", "1") is not None
        payout_client.iter_transactions.assert_called_once_with([1, 5], account="acc-1", page_size=100)

        _, new_items, updated_items = notifier.call_args.args
        assert [i["remote_id"] for i in new_items] == ["1", "2"]
        assert updated_items == []

    def test_changed_and_unchanged(self, make_monitor, payout_client, notifier):
        monitor = make_monitor(["acc-1"])
        payout_client.iter_transactions.return_value = iter([_item(1), _item(2)])
        monitor.check_all()
        notifier.reset_mock()

        payout_client.iter_transactions.return_value = iter(
            [_item(1), _item(2, status=1, tx_hash="0xabc")]
        )
        [summary] = monitor.check_all()

        assert summary.unchanged == 1
        assert summary.updated == 1
        _, new_items, updated_items = notifier.call_args.args
        assert new_items == []
        assert updated_items[0]["changed_fields"] == ["status", "tx_hash"]

    def test_no_changes_no_notification(self, make_monitor, payout_client, notifier):
        monitor = make_monitor(["acc-1"])
        payout_client.iter_transactions.return_value = iter([_item(1)])
        monitor.check_all()
        notifier.reset_mock()

        payout_client.iter_transactions.return_value = iter([_item(1)])
        monitor.check_all()

        notifier.assert_not_called()

    def test_default_account(self, make_monitor, payout_client):
        payout_client.iter_transactions.return_value = iter([])

        [summary] = make_monitor().check_all()

        assert summary.account == "default"
        payout_client.iter_transactions.assert_called_once_with([1, 5], account=None, page_size=100)

    def test_failing_account_isolated(self, make_monitor, store, payout_client):
        def fetch(statuses, account=None, page_size=100):
            if account == "broken":
                raise PayoutPlatformConnectionError("unreachable")
            return iter([_item(7)])

        payout_client.iter_transactions.side_effect = fetch

        broken, healthy = make_monitor(["broken", "acc-1"]).check_all()

        assert broken.errors == ["unreachable"]
        assert healthy.new == 1

    def test_items_without_id_ignored(self, make_monitor, payout_client):
        payout_client.iter_transactions.return_value = iter([{"status": 5}, _item(3)])
        [summary] = make_monitor(["acc-1"]).check_all()
        assert summary.new == 1

    def test_notifier_failure_is_harmless(self, make_monitor, payout_client, notifier):
        notifier.side_effect = RuntimeError("telegram down")
        payout_client.iter_transactions.return_value = iter([_item(1)])

        [summary] = make_monitor(["acc-1"]).check_all()

        assert summary.new == 1
        assert summary.errors == []

    def test_syncs_local_payout_status(self, make_monitor, store, seed_payout, payout_client):
        """A local payout with the same platform id follows the remote status."""
        payout, _ = seed_payout(platform_payout_id="55", status=5)
        payout_client.iter_transactions.return_value = iter([_item(55, status=1)])

        make_monitor(["acc-1"]).check_all()

        assert store.get_payout(payout.id).status == 1
