"""
Migration 003: Add audit columns to receipts table.

Adds parse confidence and the source email's subject and receive time.
"""

import sqlite3

VERSION = 3
NAME = "receipt_audit_columns"

COLUMNS = {
    "confidence": "REAL",
    "email_subject": "TEXT",
    "email_received_at": "TEXT",
}


def upgrade(conn: sqlite3.Connection) -> None:
    """Add audit columns to receipts."""
    cursor = conn.execute("PRAGMA table_info(receipts)")
    existing = {row[1] for row in cursor.fetchall()}

    for name, type_ in COLUMNS.items():
        if name not in existing:
            conn.execute(f"ALTER TABLE receipts ADD COLUMN {name} {type_}")


def downgrade(conn: sqlite3.Connection) -> None:
    """
    Remove audit columns.

    Requires SQLite >= 3.35.0 for DROP COLUMN.
    """
    if sqlite3.sqlite_version_info < (3, 35, 0):
        raise NotImplementedError("DROP COLUMN requires SQLite 3.35.0 or newer")
    for name in COLUMNS:
        conn.execute(f"ALTER TABLE receipts DROP COLUMN {name}")
