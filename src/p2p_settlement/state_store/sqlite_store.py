"""
SQLite-based state store implementation.

Tables:
- receipts: One row per bank notification email (email_id UNIQUE)
- payouts: Payout requests from the payout platform
- transactions: Trades on the trading platform and their settlement state
- remote_transactions: Status monitor mirror (migration 001)
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..schemas.receipt import ReceiptFields, ReceiptStatus
from .records import (
    PayoutRecord,
    ReceiptRecord,
    RemoteTransactionRecord,
    TransactionRecord,
    TransactionStatus,
    format_timestamp,
    utcnow,
)
from .repositories import (
    PayoutRepository,
    ReceiptRepository,
    RemoteTransactionRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return format_timestamp(utcnow())


def _ts(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


class StateStore(
    ReceiptRepository,
    PayoutRepository,
    TransactionRepository,
    RemoteTransactionRepository,
):
    """
    SQLite-based state store for the settlement pipeline.

    Provides persistent tracking of:
    - Receipts (idempotent on email_id, write-once payout link)
    - Payouts and transactions
    - Remote transaction mirror

    One connection per operation; safe for the single-process model where
    the scheduler threads share one store.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transactions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    status TEXT NOT NULL,
                    order_id TEXT,
                    advertisement_id TEXT,
                    recipient_card TEXT,
                    receipt_received_at TEXT,
                    approved_at TEXT,
                    completed_at TEXT,
                    failure_reason TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payouts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    platform_payout_id TEXT NOT NULL UNIQUE,
                    status INTEGER NOT NULL,
                    wallet TEXT,
                    recipient_card TEXT,
                    amount REAL,
                    amount_trader TEXT,  -- JSON: {"643": 5000}
                    transaction_id INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (transaction_id) REFERENCES transactions(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS receipts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email_id TEXT NOT NULL UNIQUE,
                    file_hash TEXT,
                    file_path TEXT,
                    status TEXT NOT NULL,
                    amount INTEGER NOT NULL DEFAULT 0,
                    transfer_type TEXT,
                    sender_name TEXT,
                    recipient_name TEXT,
                    recipient_phone TEXT,
                    recipient_bank TEXT,
                    recipient_card TEXT,
                    commission INTEGER,
                    transaction_date TEXT,
                    payout_id INTEGER,
                    is_processed INTEGER NOT NULL DEFAULT 0,
                    raw_text TEXT,
                    parsed_data TEXT,  -- JSON: extras + confidence, or {"error": ...}
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (payout_id) REFERENCES payouts(id)
                )
            """
            )

            conn.execute("CREATE INDEX IF NOT EXISTS idx_receipts_status ON receipts(status)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_payouts_status ON payouts(status)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_transactions_status ON transactions(status)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            MigrationRunner(conn).run_pending()
        finally:
            conn.close()

    # === Receipt methods ===

    def get_receipt(self, receipt_id: int) -> ReceiptRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM receipts WHERE id = ?", (receipt_id,)).fetchone()
            return ReceiptRecord.from_row(row) if row else None

    def get_receipt_by_email_id(self, email_id: str) -> ReceiptRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM receipts WHERE email_id = ?", (email_id,)
            ).fetchone()
            return ReceiptRecord.from_row(row) if row else None

    def get_receipt_by_payout(self, payout_id: int) -> ReceiptRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM receipts WHERE payout_id = ?", (payout_id,)
            ).fetchone()
            return ReceiptRecord.from_row(row) if row else None

    def create_receipt(
        self,
        email_id: str,
        status: ReceiptStatus,
        fields: ReceiptFields,
        file_hash: str | None = None,
        file_path: str | None = None,
        raw_text: str | None = None,
        parsed_data: dict[str, Any] | None = None,
        confidence: float | None = None,
        email_subject: str | None = None,
        email_received_at: datetime | None = None,
    ) -> tuple[ReceiptRecord, bool]:
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO receipts
                (email_id, file_hash, file_path, status, amount, transfer_type,
                 sender_name, recipient_name, recipient_phone, recipient_bank,
                 recipient_card, commission, transaction_date, is_processed,
                 raw_text, parsed_data, confidence, email_subject, email_received_at,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(email_id) DO NOTHING
            """,
                (
                    email_id,
                    file_hash,
                    file_path,
                    status.value,
                    fields.amount,
                    fields.transfer_type.value if fields.transfer_type else None,
                    fields.sender_name,
                    fields.recipient_name,
                    fields.recipient_phone,
                    fields.recipient_bank,
                    fields.recipient_card,
                    fields.commission,
                    _ts(fields.transaction_date),
                    raw_text,
                    json.dumps(parsed_data or {}, ensure_ascii=False),
                    confidence,
                    email_subject,
                    _ts(email_received_at),
                    now,
                    now,
                ),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM receipts WHERE email_id = ?", (email_id,)
            ).fetchone()

        if not created:
            logger.debug("Receipt for email %s already exists", email_id)
        return ReceiptRecord.from_row(row), created

    def update_receipt_parse(
        self,
        receipt_id: int,
        status: ReceiptStatus,
        fields: ReceiptFields,
        raw_text: str | None,
        parsed_data: dict[str, Any],
        confidence: float | None,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE receipts
                SET status = ?, amount = ?, transfer_type = ?, sender_name = ?,
                    recipient_name = ?, recipient_phone = ?, recipient_bank = ?,
                    recipient_card = ?, commission = ?, transaction_date = ?,
                    raw_text = ?, parsed_data = ?, confidence = ?, updated_at = ?
                WHERE id = ? AND payout_id IS NULL
            """,
                (
                    status.value,
                    fields.amount,
                    fields.transfer_type.value if fields.transfer_type else None,
                    fields.sender_name,
                    fields.recipient_name,
                    fields.recipient_phone,
                    fields.recipient_bank,
                    fields.recipient_card,
                    fields.commission,
                    _ts(fields.transaction_date),
                    raw_text,
                    json.dumps(parsed_data, ensure_ascii=False),
                    confidence,
                    _now(),
                    receipt_id,
                ),
            )

    def _link_receipt(self, conn: sqlite3.Connection, receipt_id: int, payout_id: int) -> bool:
        cursor = conn.execute(
            """
            UPDATE receipts
            SET payout_id = ?, is_processed = 1, updated_at = ?
            WHERE id = ? AND payout_id IS NULL
        """,
            (payout_id, _now(), receipt_id),
        )
        return cursor.rowcount == 1

    def _mark_receipt_received(
        self, conn: sqlite3.Connection, transaction_id: int, at: datetime
    ) -> bool:
        cursor = conn.execute(
            """
            UPDATE transactions
            SET receipt_received_at = ?, status = ?, updated_at = ?
            WHERE id = ? AND receipt_received_at IS NULL
        """,
            (_ts(at), TransactionStatus.RECEIPT_RECEIVED.value, _now(), transaction_id),
        )
        return cursor.rowcount == 1

    def link_receipt_to_payout(self, receipt_id: int, payout_id: int) -> bool:
        try:
            with self._transaction() as conn:
                return self._link_receipt(conn, receipt_id, payout_id)
        except sqlite3.IntegrityError:
            logger.warning(
                "Payout %s already linked to another receipt (receipt %s not linked)",
                payout_id,
                receipt_id,
            )
            return False

    def commit_match(
        self, receipt_id: int, payout_id: int, transaction_id: int, at: datetime
    ) -> bool:
        try:
            with self._transaction() as conn:
                if not self._link_receipt(conn, receipt_id, payout_id):
                    return False
                if not self._mark_receipt_received(conn, transaction_id, at):
                    # Transaction already has a receipt; undo the link
                    conn.rollback()
                    return False
                return True
        except sqlite3.IntegrityError:
            logger.warning(
                "Payout %s already linked to another receipt (receipt %s not linked)",
                payout_id,
                receipt_id,
            )
            return False

    def list_unmatched_receipts(self, limit: int | None = None) -> list[ReceiptRecord]:
        query = """
            SELECT * FROM receipts
            WHERE status = ? AND payout_id IS NULL AND amount > 0
            ORDER BY transaction_date ASC, id ASC
        """
        params: tuple = (ReceiptStatus.SUCCESS.value,)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    def list_failed_receipts(self, limit: int | None = None) -> list[ReceiptRecord]:
        query = "SELECT * FROM receipts WHERE status = ? ORDER BY id ASC"
        params: tuple = (ReceiptStatus.FAILED.value,)
        if limit is not None:
            query += " LIMIT ?"
            params += (limit,)
        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [ReceiptRecord.from_row(row) for row in rows]

    # === Payout methods ===

    def upsert_payout(
        self,
        platform_payout_id: str,
        status: int,
        wallet: str | None = None,
        recipient_card: str | None = None,
        amount: float | None = None,
        amount_trader: dict[str, float] | None = None,
        transaction_id: int | None = None,
        created_at: datetime | None = None,
    ) -> PayoutRecord:
        """Insert or update a payout by its platform id."""
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO payouts
                (platform_payout_id, status, wallet, recipient_card, amount, amount_trader,
                 transaction_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(platform_payout_id) DO UPDATE SET
                    status = excluded.status,
                    wallet = excluded.wallet,
                    recipient_card = excluded.recipient_card,
                    amount = excluded.amount,
                    amount_trader = excluded.amount_trader,
                    transaction_id = COALESCE(excluded.transaction_id, payouts.transaction_id),
                    updated_at = excluded.updated_at
            """,
                (
                    str(platform_payout_id),
                    status,
                    wallet,
                    recipient_card,
                    amount,
                    json.dumps(amount_trader or {}),
                    transaction_id,
                    _ts(created_at) or now,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM payouts WHERE platform_payout_id = ?", (str(platform_payout_id),)
            ).fetchone()
            return PayoutRecord.from_row(row)

    def get_payout(self, payout_id: int) -> PayoutRecord | None:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM payouts WHERE id = ?", (payout_id,)).fetchone()
            return PayoutRecord.from_row(row) if row else None

    def get_payout_by_platform_id(self, platform_payout_id: str) -> PayoutRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM payouts WHERE platform_payout_id = ?", (str(platform_payout_id),)
            ).fetchone()
            return PayoutRecord.from_row(row) if row else None

    def get_payout_by_transaction(self, transaction_id: int) -> PayoutRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM payouts WHERE transaction_id = ? ORDER BY id ASC LIMIT 1",
                (transaction_id,),
            ).fetchone()
            return PayoutRecord.from_row(row) if row else None

    def list_match_candidates(self, status: int) -> list[PayoutRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT p.* FROM payouts p
                WHERE p.status = ?
                  AND p.transaction_id IS NOT NULL
                  AND NOT EXISTS (SELECT 1 FROM receipts r WHERE r.payout_id = p.id)
                ORDER BY p.created_at ASC, p.id ASC
            """,
                (status,),
            ).fetchall()
            return [PayoutRecord.from_row(row) for row in rows]

    def update_payout_status(self, payout_id: int, status: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE payouts SET status = ?, updated_at = ? WHERE id = ?",
                (status, _now(), payout_id),
            )

    # === Transaction methods ===

    def create_transaction(
        self,
        status: TransactionStatus = TransactionStatus.PENDING,
        order_id: str | None = None,
        advertisement_id: str | None = None,
        recipient_card: str | None = None,
    ) -> TransactionRecord:
        """Create a transaction record (normally done by upstream order handling)."""
        now = _now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO transactions
                (status, order_id, advertisement_id, recipient_card, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (status.value, order_id, advertisement_id, recipient_card, now, now),
            )
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
            return TransactionRecord.from_row(row)

    def get_transaction(self, transaction_id: int) -> TransactionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
            return TransactionRecord.from_row(row) if row else None

    def mark_receipt_received(self, transaction_id: int, at: datetime) -> None:
        with self._transaction() as conn:
            self._mark_receipt_received(conn, transaction_id, at)

    def mark_approved(self, transaction_id: int, at: datetime) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE transactions
                SET approved_at = ?, status = ?, updated_at = ?
                WHERE id = ?
            """,
                (_ts(at), TransactionStatus.RELEASE_MONEY.value, _now(), transaction_id),
            )

    def list_awaiting_approval(self) -> list[TransactionRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM transactions
                WHERE status = ? AND approved_at IS NULL
                ORDER BY receipt_received_at ASC, id ASC
            """,
                (TransactionStatus.RECEIPT_RECEIVED.value,),
            ).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]

    def list_release_candidates(self) -> list[TransactionRecord]:
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM transactions
                WHERE status = ? AND approved_at IS NOT NULL
                ORDER BY approved_at ASC, id ASC
            """,
                (TransactionStatus.RELEASE_MONEY.value,),
            ).fetchall()
            return [TransactionRecord.from_row(row) for row in rows]

    def mark_completed(self, transaction_id: int, at: datetime) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET status = ?, completed_at = ?, updated_at = ?
                WHERE id = ? AND status = ?
            """,
                (
                    TransactionStatus.COMPLETED.value,
                    _ts(at),
                    _now(),
                    transaction_id,
                    TransactionStatus.RELEASE_MONEY.value,
                ),
            )
            return cursor.rowcount == 1

    def mark_failed(self, transaction_id: int, reason: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET status = ?, failure_reason = ?, updated_at = ?
                WHERE id = ? AND status = ?
            """,
                (
                    TransactionStatus.FAILED.value,
                    reason,
                    _now(),
                    transaction_id,
                    TransactionStatus.RELEASE_MONEY.value,
                ),
            )
            return cursor.rowcount == 1

    # === Remote transaction mirror ===

    def get_remote_transaction(
        self, account: str, remote_id: str
    ) -> RemoteTransactionRecord | None:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM remote_transactions WHERE account = ? AND remote_id = ?",
                (account, str(remote_id)),
            ).fetchone()
            return RemoteTransactionRecord.from_row(row) if row else None

    def save_remote_transaction(self, record: RemoteTransactionRecord) -> None:
        now = _now()
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO remote_transactions
                (account, remote_id, status, status_text, amount, amount_usdt, fee, fee_usdt,
                 tx_hash, description, raw_json, first_seen, last_seen, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(account, remote_id) DO UPDATE SET
                    status = excluded.status,
                    status_text = excluded.status_text,
                    amount = excluded.amount,
                    amount_usdt = excluded.amount_usdt,
                    fee = excluded.fee,
                    fee_usdt = excluded.fee_usdt,
                    tx_hash = excluded.tx_hash,
                    description = excluded.description,
                    raw_json = excluded.raw_json,
                    last_seen = excluded.last_seen,
                    updated_at = excluded.updated_at
            """,
                (
                    record.account,
                    str(record.remote_id),
                    record.status,
                    record.status_text,
                    record.amount,
                    record.amount_usdt,
                    record.fee,
                    record.fee_usdt,
                    record.tx_hash,
                    record.description,
                    json.dumps(record.raw, ensure_ascii=False, default=str),
                    now,
                    now,
                    now,
                ),
            )

    def touch_remote_transaction(self, account: str, remote_id: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE remote_transactions SET last_seen = ? WHERE account = ? AND remote_id = ?",
                (_now(), account, str(remote_id)),
            )

    # === Statistics ===

    def get_stats(self) -> dict[str, Any]:
        """Get pipeline statistics."""
        with self._transaction() as conn:

            def count(query: str, params: tuple = ()) -> int:
                row = conn.execute(query, params).fetchone()
                return row[0] if row else 0

            tx_by_status = {
                row["status"]: row["count"]
                for row in conn.execute(
                    "SELECT status, COUNT(*) AS count FROM transactions GROUP BY status"
                ).fetchall()
            }

            return {
                "receipts_total": count("SELECT COUNT(*) FROM receipts"),
                "receipts_success": count(
                    "SELECT COUNT(*) FROM receipts WHERE status = ?",
                    (ReceiptStatus.SUCCESS.value,),
                ),
                "receipts_failed": count(
                    "SELECT COUNT(*) FROM receipts WHERE status = ?",
                    (ReceiptStatus.FAILED.value,),
                ),
                "receipts_matched": count(
                    "SELECT COUNT(*) FROM receipts WHERE payout_id IS NOT NULL"
                ),
                "payouts_total": count("SELECT COUNT(*) FROM payouts"),
                "transactions_by_status": tx_by_status,
                "remote_transactions": count("SELECT COUNT(*) FROM remote_transactions"),
            }
