"""Integration tests with mocked HTTP.

A receipt email travels through the real mailbox, payout platform and trading
platform clients; only the PDF text layer is stubbed.
"""

import base64
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import responses

from p2p_settlement.config import MailboxConfig, MatchingConfig, SettlementConfig
from p2p_settlement.extractors import ReceiptParser
from p2p_settlement.mailbox_client import MailboxClient
from p2p_settlement.matching import MatchingEngine
from p2p_settlement.payout_client import PayoutClient
from p2p_settlement.services import MailboxScanner, SettlementOrchestrator
from p2p_settlement.state_store import TransactionStatus
from p2p_settlement.trading_client import TradingClient

from .conftest import SAMPLE_PDF_BYTES, SAMPLE_RECEIPT_BY_PHONE

MAIL_API = "http://mail.test/gmail/v1/users/me"
PAYOUTS_URL = "http://payouts.test"
TRADING_URL = "http://trading.test"

APPROVED_AT = datetime(2025, 6, 9, 14, 12, 0, tzinfo=timezone.utc)

RECEIPT_5000 = SAMPLE_RECEIPT_BY_PHONE.replace("4 500", "5 000")


def _add_mailbox_responses():
    responses.add(
        responses.GET,
        f"{MAIL_API}/messages",
        json={"messages": [{"id": "m1", "threadId": "t1"}]},
    )
    responses.add(
        responses.GET,
        f"{MAIL_API}/messages/m1",
        json={
            "id": "m1",
            "internalDate": "1749478218000",
            "payload": {
                "headers": [
                    {"name": "Subject", "value": "Квитанция о переводе"},
                    {"name": "From", "value": "noreply@tinkoff.ru"},
                ],
                "parts": [
                    {
                        "mimeType": "application/pdf",
                        "filename": "receipt.pdf",
                        "body": {"attachmentId": "att-1", "size": len(SAMPLE_PDF_BYTES)},
                    },
                ],
            },
        },
    )
    responses.add(
        responses.GET,
        f"{MAIL_API}/messages/m1/attachments/att-1",
        json={"data": base64.urlsafe_b64encode(SAMPLE_PDF_BYTES).decode("ascii")},
    )


def _add_trading_responses():
    for endpoint in ("/v5/p2p/order/finish", "/v5/p2p/order/message/send", "/v5/p2p/item/cancel"):
        responses.add(
            responses.POST,
            f"{TRADING_URL}{endpoint}",
            json={"retCode": 0, "retMsg": "SUCCESS", "result": {}},
        )


class TestSettlementPipeline:
    """Receipt email to completed trade."""

    @pytest.fixture
    def pipeline(self, store, pdf_store):
        text_extractor = MagicMock()
        text_extractor.extract.return_value = RECEIPT_5000

        orchestrator = SettlementOrchestrator(
            receipts=store,
            payouts=store,
            transactions=store,
            pdf_store=pdf_store,
            payout_client=PayoutClient(PAYOUTS_URL, "payout-token"),
            trading_client=TradingClient(TRADING_URL, "key", "secret"),
            config=SettlementConfig(),
            clock=lambda: APPROVED_AT,
        )
        scanner = MailboxScanner(
            mailboxes={"receipts@example.com": MailboxClient("http://mail.test", "mail-token")},
            parser=ReceiptParser(),
            text_extractor=text_extractor,
            pdf_store=pdf_store,
            receipts=store,
            matcher=MatchingEngine(store, store, store, MatchingConfig()),
            config=MailboxConfig(),
            on_match=orchestrator.on_match,
            clock=lambda: APPROVED_AT,
        )
        return scanner, orchestrator

    @responses.activate
    def test_receipt_to_completed_trade(self, pipeline, store, seed_payout):
        scanner, orchestrator = pipeline
        payout, transaction = seed_payout(amount=5000, wallet="9123456789")
        _add_mailbox_responses()
        responses.add(
            responses.POST,
            f"{PAYOUTS_URL}/api/v1/payouts/P-1/approve",
            json={"success": True},
        )
        _add_trading_responses()

        summary = scanner.scan()

        assert summary.new_receipts == 1
        assert summary.matched == 1
        assert summary.approved == 1

        receipt = store.get_receipt_by_email_id("m1")
        assert receipt.amount == 5000
        assert receipt.payout_id == payout.id
        assert store.get_payout(payout.id).status == 1

        approve_call = next(c for c in responses.calls if c.request.url.endswith("/approve"))
        assert SAMPLE_PDF_BYTES in approve_call.request.body
        assert approve_call.request.headers["Authorization"] == "Bearer payout-token"

        waiting = orchestrator.process_releases(now=APPROVED_AT + timedelta(minutes=1))
        assert waiting.waiting == 1
        assert store.get_transaction(transaction.id).status == TransactionStatus.RELEASE_MONEY

        done = orchestrator.process_releases(now=APPROVED_AT + timedelta(minutes=3))
        assert done.completed == 1
        assert store.get_transaction(transaction.id).status == TransactionStatus.COMPLETED

        finish_calls = [c for c in responses.calls if c.request.url.endswith("/order/finish")]
        assert len(finish_calls) == 1
        assert json.loads(finish_calls[0].request.body) == {"orderId": "order-1"}

    @responses.activate
    def test_amount_outside_tolerance_not_settled(self, pipeline, store, seed_payout):
        scanner, orchestrator = pipeline
        seed_payout(amount=5101, wallet="9123456789")
        _add_mailbox_responses()

        summary = scanner.scan()

        assert summary.new_receipts == 1
        assert summary.matched == 0
        assert store.get_receipt_by_email_id("m1").payout_id is None
        assert not any(c.request.url.endswith("/approve") for c in responses.calls)
        assert orchestrator.process_releases(now=APPROVED_AT + timedelta(minutes=3)).checked == 0
