"""
Versioned schema migrations for the state store.

Migration modules live next to this file and are named NNN_name.py, e.g.
001_remote_transactions.py. Each defines:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None
- downgrade(conn: Connection) -> None  # optional, may raise NotImplementedError

Applied versions are recorded in the `migrations` table. A module that fails
to import is an error, not a warning: skipping a migration silently would
leave the schema behind the code.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MIGRATION_PACKAGE = "p2p_settlement.state_store.migrations"


class MigrationError(Exception):
    """Raised when migrations cannot be loaded or applied."""

    pass


@dataclass
class Migration:
    """A single schema step."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]
    downgrade: Callable[[sqlite3.Connection], None] | None

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"


def get_all_migrations() -> list[Migration]:
    """Load every migration module, sorted by version."""
    migrations: dict[int, Migration] = {}

    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        try:
            module = importlib.import_module(f"{MIGRATION_PACKAGE}.{py_file.stem}")
            migration = Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
                downgrade=getattr(module, "downgrade", None),
            )
        except (ImportError, AttributeError) as e:
            raise MigrationError(f"Invalid migration module {py_file.name}: {e}") from e

        if migration.version in migrations:
            raise MigrationError(
                f"Duplicate migration version {migration.version}: "
                f"{migrations[migration.version].label} and {migration.label}"
            )
        migrations[migration.version] = migration

    return [migrations[v] for v in sorted(migrations)]


class MigrationRunner:
    """Applies and rolls back migrations on one connection."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        applied = self.get_applied_versions()
        return max(applied) if applied else 0

    def status(self) -> list[tuple[str, bool]]:
        """List (label, applied) for every known migration."""
        applied = self.get_applied_versions()
        return [(m.label, m.version in applied) for m in get_all_migrations()]

    def _apply(self, migration: Migration) -> None:
        logger.info("Applying migration %s", migration.label)
        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %s failed", migration.label)
            raise

    def _rollback(self, migration: Migration) -> None:
        if migration.downgrade is None:
            raise MigrationError(f"Migration {migration.label} does not support rollback")

        logger.info("Rolling back migration %s", migration.label)
        try:
            migration.downgrade(self.conn)
            self.conn.execute("DELETE FROM migrations WHERE version = ?", (migration.version,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Rollback of migration %s failed", migration.label)
            raise

    def run_pending(self) -> list[int]:
        """
        Apply every migration not yet recorded.

        Returns:
            Versions applied, in order
        """
        applied = self.get_applied_versions()
        done = []
        for migration in get_all_migrations():
            if migration.version not in applied:
                self._apply(migration)
                done.append(migration.version)

        if done:
            logger.info("Applied %d migration(s): %s", len(done), done)
        return done

    def migrate_to(self, target_version: int) -> None:
        """Upgrade or downgrade until the schema is at target_version."""
        applied = self.get_applied_versions()
        migrations = get_all_migrations()

        for migration in migrations:
            if migration.version <= target_version and migration.version not in applied:
                self._apply(migration)

        for migration in reversed(migrations):
            if migration.version > target_version and migration.version in applied:
                self._rollback(migration)
