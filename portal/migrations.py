"""
Database Migration System

A forward-only migration runner for the portal's SQLite database.
Migrations are plain SQL batches in db/migrations, applied in filename
order and tracked by exact filename, so an applied file must never be
renamed or renumbered.
"""

import logging
import re
from datetime import datetime
from pathlib import Path

from portal.config import MIGRATIONS_DIR
from portal.database import Database
from portal.errors import FatalStartupError


MIGRATIONS_TABLE = "migrations"
MIGRATION_SUFFIX = ".sql"

# A statement ends at a semicolon followed by a line break or end of file
STATEMENT_BOUNDARY = re.compile(r";\s*(?:\n|$)")

logger = logging.getLogger(__name__)


class MigrationError(FatalStartupError):
    """Migration-related error."""
    pass


def split_statements(sql: str) -> list[str]:
    """Split a migration batch into statements, in file order."""
    statements = []
    for chunk in STATEMENT_BOUNDARY.split(sql):
        statement = chunk.strip()
        if not statement:
            continue
        # Skip fragments that hold nothing but comments
        code_lines = [
            line for line in statement.splitlines()
            if line.strip() and not line.strip().startswith("--")
        ]
        if code_lines:
            statements.append(statement)
    return statements


class Migrator:
    """Database migration manager."""

    def __init__(self, db: Database, migrations_dir: str | Path = MIGRATIONS_DIR):
        self.db = db
        self.migrations_dir = Path(migrations_dir)

    def init_migrations_table(self):
        """Create migrations tracking table if it doesn't exist."""
        conn = self.db.connect()
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {MIGRATIONS_TABLE} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT UNIQUE NOT NULL,
                applied_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        conn.commit()

    def get_applied_migrations(self) -> list[str]:
        """Get list of applied migration names."""
        self.init_migrations_table()
        conn = self.db.connect()
        rows = conn.execute(
            f"SELECT name FROM {MIGRATIONS_TABLE} ORDER BY id"
        ).fetchall()
        return [row["name"] for row in rows]

    def get_available_migrations(self) -> list[str]:
        """Get list of all migration files, sorted by filename."""
        if not self.migrations_dir.exists():
            return []

        return sorted(
            f.name for f in self.migrations_dir.iterdir()
            if f.is_file() and f.name.endswith(MIGRATION_SUFFIX)
        )

    def get_pending_migrations(self) -> list[str]:
        """Get list of pending migration names."""
        applied = set(self.get_applied_migrations())
        return [m for m in self.get_available_migrations() if m not in applied]

    def load_migration(self, name: str) -> list[str]:
        """Read a migration file and split it into statements."""
        migration_path = self.migrations_dir / name
        if not migration_path.exists():
            raise MigrationError(f"Migration file not found: {migration_path}")
        return split_statements(migration_path.read_text(encoding="utf-8"))

    def run_migration(self, name: str):
        """
        Apply a single migration and record it, as one transaction.

        A failing statement rolls back the whole file, including the ledger
        entry, so the migration is retried on the next boot.
        """
        statements = self.load_migration(name)

        try:
            with self.db.transaction() as conn:
                for statement in statements:
                    conn.execute(statement)
                conn.execute(
                    f"INSERT INTO {MIGRATIONS_TABLE} (name) VALUES (?)",
                    (name,)
                )
        except Exception as e:
            logger.error("Migration %s failed: %s", name, e)
            raise MigrationError(f"Migration {name} failed: {e}") from e

    def migrate(self, steps: int | None = None) -> list[str]:
        """
        Apply pending migrations.

        Args:
            steps: Number of migrations to apply (None = all)

        Returns:
            List of applied migration names
        """
        pending = self.get_pending_migrations()

        if steps is not None:
            pending = pending[:steps]

        applied = []
        for name in pending:
            self.run_migration(name)
            logger.info("Applied migration: %s", name)
            applied.append(name)

        return applied

    def status(self) -> dict:
        """Get migration status."""
        applied = self.get_applied_migrations()
        pending = self.get_pending_migrations()

        return {
            "applied": applied,
            "pending": pending,
            "total_applied": len(applied),
            "total_pending": len(pending),
        }


def create_migration(name: str, migrations_dir: str | Path = MIGRATIONS_DIR) -> Path:
    """
    Create a new, empty migration file with the next sequence number.

    Args:
        name: Migration name (will be snake_cased)
        migrations_dir: Directory holding the migrations

    Returns:
        Path to created migration file
    """
    migrations_dir = Path(migrations_dir)
    migrations_dir.mkdir(parents=True, exist_ok=True)

    numbers = []
    pattern = re.compile(r"^(\d+)_")
    for f in migrations_dir.iterdir():
        match = pattern.match(f.name)
        if match:
            numbers.append(int(match.group(1)))
    sequence = max(numbers, default=0) + 1

    # Clean up name
    clean_name = re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")
    if not clean_name:
        raise MigrationError("Migration name must contain letters or digits")

    filepath = migrations_dir / f"{sequence:04d}_{clean_name}{MIGRATION_SUFFIX}"
    filepath.write_text(
        f"-- Migration: {name}\n"
        f"-- Created: {datetime.now().isoformat(timespec='seconds')}\n"
        f"-- End every statement with a semicolon at the end of a line.\n"
    )
    return filepath
