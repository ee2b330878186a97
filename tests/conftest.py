"""Test fixtures and utilities."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from p2p_settlement.config import (
    Config,
    MailboxAccountConfig,
    MailboxConfig,
    MatchingConfig,
    MonitorConfig,
    PayoutPlatformConfig,
    SettlementConfig,
    TradingPlatformConfig,
)
from p2p_settlement.schemas.receipt import ReceiptFields, ReceiptStatus, TransferType
from p2p_settlement.state_store import StateStore, TransactionStatus
from p2p_settlement.storage import PdfStore

# Receipt text layers as produced by pdfplumber

# Transfer by phone number, label followed by value
SAMPLE_RECEIPT_BY_PHONE = """Т-Банк
09.06.2025 17:10:18
Итого
4 500 ₽
Перевод
По номеру телефона
Статус
Успешно
Сумма
4 500 ₽
Комиссия
Без комиссии
Отправитель
Иван Иванович И.
Телефон получателя
+7 (912) 345-67-89
Получатель
Петр П.
Банк получателя
Сбербанк
Счет списания
****1234
Идентификатор операции A5160141012345
СБП
123456789
Квитанция № 1-23-456-789-012
Служба поддержки fb@tbank.ru
"""

# Same transfer, labels block followed by values block
SAMPLE_RECEIPT_BY_PHONE_COLUMNS = """Т-Банк
09.06.2025 17:10:18
Перевод
По номеру телефона
Успешно
Сумма
4 500 ₽
Комиссия
Отправитель
Телефон получателя
Получатель
Банк получателя
Без комиссии
Иван Иванович И.
+7 (912) 345-67-89
Петр П.
Сбербанк
"""

# Transfer to another client of the bank, no seconds in the timestamp
SAMPLE_RECEIPT_TO_CLIENT = """Т-Банк
15.07.2025 09:05
Итого
12 000 ₽
Перевод
Клиенту Т-Банка
Статус
Успешно
Сумма
12 000 ₽
Отправитель
Мария Сергеевна К.
Карта получателя
*4207
Получатель
Алексей Б.
Квитанция № 1-10-200-300-400
Служба поддержки fb@tbank.ru
"""

# Transfer to a card with a commission
SAMPLE_RECEIPT_TO_CARD = """Тинькофф Банк
01.08.2025 21:45:00
Итого
10 050 ₽
Перевод
На карту
Статус
Успешно
Сумма
10 000 ₽
Комиссия
50 ₽
Отправитель
Ольга Н.
Карта получателя
220070******1234
Идентификатор операции B1234567890
Квитанция № 1-99-888-777-666
"""

SAMPLE_PDF_BYTES = b"%PDF-1.4\n% sample receipt\n%%EOF\n"

# Payout request time used by the matching fixtures (before every sample receipt)
PAYOUT_CREATED_AT = datetime(2025, 6, 9, 14, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def receipt_by_phone_text() -> str:
    return SAMPLE_RECEIPT_BY_PHONE


@pytest.fixture
def receipt_to_client_text() -> str:
    return SAMPLE_RECEIPT_TO_CLIENT


@pytest.fixture
def receipt_to_card_text() -> str:
    return SAMPLE_RECEIPT_TO_CARD


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def store(temp_db) -> StateStore:
    """Fresh state store with migrations applied."""
    return StateStore(temp_db)


@pytest.fixture
def pdf_store(tmp_path) -> PdfStore:
    return PdfStore(tmp_path / "receipts")


@pytest.fixture
def config(tmp_path) -> Config:
    """Configuration pointing at temporary storage."""
    return Config(
        payout_platform=PayoutPlatformConfig(
            base_url="http://payouts.test", token="payout-token", accounts=["acc-1"]
        ),
        trading_platform=TradingPlatformConfig(
            base_url="http://trading.test", api_key="key", api_secret="secret"
        ),
        mailbox=MailboxConfig(
            base_url="http://mail.test",
            accounts=[MailboxAccountConfig(email="receipts@example.com", access_token="tok")],
        ),
        matching=MatchingConfig(),
        settlement=SettlementConfig(),
        monitor=MonitorConfig(),
        state_db_path=tmp_path / "state.db",
        pdf_storage_path=tmp_path / "receipts",
    )


@pytest.fixture
def seed_payout(store):
    """Create a transaction and a pending payout linked to it."""

    def _seed(
        platform_payout_id: str = "P-1",
        amount: float = 4500,
        wallet: str | None = "89123456789",
        recipient_card: str | None = None,
        created_at: datetime = PAYOUT_CREATED_AT,
        status: int = 5,
        order_id: str | None = "order-1",
        advertisement_id: str | None = "ad-1",
    ):
        transaction = store.create_transaction(
            status=TransactionStatus.PAYMENT_RECEIVED,
            order_id=order_id,
            advertisement_id=advertisement_id,
        )
        payout = store.upsert_payout(
            platform_payout_id=platform_payout_id,
            status=status,
            wallet=wallet,
            recipient_card=recipient_card,
            amount=amount,
            amount_trader={"643": amount},
            transaction_id=transaction.id,
            created_at=created_at,
        )
        return payout, transaction

    return _seed


@pytest.fixture
def seed_receipt(store):
    """Create a SUCCESS receipt with the given identity fields."""

    def _seed(
        email_id: str = "msg-1",
        amount: int = 4500,
        recipient_phone: str | None = "+7 (912) 345-67-89",
        recipient_card: str | None = None,
        transaction_date: datetime | None = datetime(2025, 6, 9, 14, 10, 18, tzinfo=timezone.utc),
        file_path: str | None = None,
        status: ReceiptStatus = ReceiptStatus.SUCCESS,
    ):
        fields = ReceiptFields(
            transfer_type=TransferType.BY_PHONE if recipient_phone else TransferType.TO_CARD,
            transaction_date=transaction_date,
            amount=amount,
            sender_name="Иван Иванович И.",
            recipient_phone=recipient_phone,
            recipient_card=recipient_card,
        )
        record, _ = store.create_receipt(
            email_id=email_id,
            status=status,
            fields=fields,
            file_path=file_path,
        )
        return record

    return _seed
