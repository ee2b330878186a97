"""
Migration 001: Add remote_transactions table.

Local mirror of payout platform transactions, maintained by the status monitor.
"""

import sqlite3

VERSION = 1
NAME = "remote_transactions"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create remote_transactions table."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS remote_transactions (
            account TEXT NOT NULL,
            remote_id TEXT NOT NULL,
            status INTEGER,
            status_text TEXT,
            amount REAL,
            amount_usdt REAL,
            fee REAL,
            fee_usdt REAL,
            tx_hash TEXT,
            description TEXT,
            raw_json TEXT,  -- last payload as received
            first_seen TEXT NOT NULL,
            last_seen TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (account, remote_id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_remote_transactions_status ON remote_transactions(status)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove remote_transactions table."""
    conn.execute("DROP TABLE IF EXISTS remote_transactions")
