"""
Migration 002: One receipt per payout.

A payout may be linked to at most one receipt. Enforced with a partial
unique index so unlinked receipts (payout_id NULL) are unaffected.
"""

import sqlite3

VERSION = 2
NAME = "receipt_payout_unique"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create partial unique index on receipts.payout_id."""
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_receipts_payout_unique
        ON receipts(payout_id) WHERE payout_id IS NOT NULL
    """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the unique index."""
    conn.execute("DROP INDEX IF EXISTS idx_receipts_payout_unique")
