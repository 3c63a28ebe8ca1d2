from __future__ import annotations

import logging
from pathlib import Path

from database.base import Database

LOGGER = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent

MIGRATION_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    id TEXT PRIMARY KEY,
    applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""


def pending_migrations(migrations_path: Path, applied_ids: set[str]) -> list[Path]:
    return [path for path in sorted(migrations_path.glob("*.sql")) if path.name not in applied_ids]


async def run_migrations(database: Database, migrations_path: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply every ``*.sql`` file not yet recorded, in file-name order."""
    await database.executescript(MIGRATION_TABLE_SQL)
    applied = await database.fetchall("SELECT id FROM schema_migrations;")
    applied_ids = {row["id"] for row in applied}

    newly_applied: list[str] = []
    for migration_file in pending_migrations(migrations_path, applied_ids):
        LOGGER.info("Applying migration %s", migration_file.name)
        await database.executescript(migration_file.read_text(encoding="utf-8"))
        await database.execute("INSERT INTO schema_migrations(id) VALUES (?);", [migration_file.name])
        newly_applied.append(migration_file.name)

    if newly_applied:
        LOGGER.info("Applied %s migration(s)", len(newly_applied))
    return newly_applied
