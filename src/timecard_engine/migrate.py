"""Apply timecard migrations to the database.

Usage:
    timecard-migrate
    timecard-migrate --database-url postgresql://...
    timecard-migrate --dry-run

Migrations are forward only: every file is applied once, in number order,
and recorded in timecard_migration_history.
"""

from __future__ import annotations

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import Iterable, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from timecard_engine.config import get_settings
from timecard_engine.errors import MigrationLedgerError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

HISTORY_DDL = """
    CREATE TABLE IF NOT EXISTS timecard_migration_history (
        migration_number INT PRIMARY KEY,
        filename TEXT NOT NULL,
        applied_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
"""


def get_migration_files(migrations_dir: Path = MIGRATIONS_DIR) -> list[Path]:
    """Get all migration files in order."""
    if not migrations_dir.exists():
        raise MigrationLedgerError(f"Migrations directory not found: {migrations_dir}")
    return sorted(migrations_dir.glob("*.sql"), key=parse_migration_number)


def parse_migration_number(filepath: Path) -> int:
    """Extract migration number from filename (NNN_name.sql)."""
    match = re.match(r"(\d+)_", filepath.name)
    if match is None:
        raise MigrationLedgerError(f"Migration file {filepath.name} has no NNN_ prefix")
    return int(match.group(1))


def plan_migrations(files: Iterable[Path], applied: Iterable[int]) -> list[tuple[int, Path]]:
    """Pending migrations in apply order.

    Raises MigrationLedgerError when two files share a number, when an applied
    migration has no file, or when a pending file is numbered below the
    highest applied one.
    """
    by_number: dict[int, Path] = {}
    for filepath in files:
        number = parse_migration_number(filepath)
        if number in by_number:
            raise MigrationLedgerError(
                f"Migrations {by_number[number].name} and {filepath.name} share number {number}"
            )
        by_number[number] = filepath

    applied = set(applied)
    missing = sorted(applied - set(by_number))
    if missing:
        raise MigrationLedgerError(f"Applied migrations have no file: {missing}")

    pending = sorted((n, p) for n, p in by_number.items() if n not in applied)
    if applied and pending and pending[0][0] < max(applied):
        raise MigrationLedgerError(
            f"Migration {pending[0][1].name} is older than applied migration {max(applied)}"
        )
    return pending


def get_applied_migrations(engine: Engine) -> set[int]:
    """Get set of applied migration numbers, creating the history table if needed."""
    with engine.begin() as conn:
        conn.execute(text(HISTORY_DDL))
        result = conn.execute(text("SELECT migration_number FROM timecard_migration_history"))
        return {row[0] for row in result}


def apply_migration(engine: Engine, filepath: Path, migration_num: int, dry_run: bool) -> None:
    """Apply a single migration file and record it, in one transaction."""
    sql_content = filepath.read_text(encoding="utf-8")

    if dry_run:
        logger.info("[DRY RUN] Would apply %s (%d characters)", filepath.name, len(sql_content))
        return

    logger.info("Applying %s", filepath.name)
    with engine.begin() as conn:
        conn.exec_driver_sql(sql_content)
        conn.execute(
            text("""
                INSERT INTO timecard_migration_history (migration_number, filename)
                VALUES (:num, :name)
                ON CONFLICT (migration_number) DO NOTHING
            """),
            {"num": migration_num, "name": filepath.name},
        )


def run(database_url: str, dry_run: bool = False, migrations_dir: Path = MIGRATIONS_DIR) -> int:
    """Apply every pending migration. Returns the number applied (or planned)."""
    files = get_migration_files(migrations_dir)
    logger.info("Found %d migration files", len(files))

    engine = create_engine(database_url)
    try:
        applied = get_applied_migrations(engine)
        logger.info("Already applied: %d", len(applied))

        pending = plan_migrations(files, applied)
        if not pending:
            logger.info("No pending migrations")
            return 0

        for migration_num, filepath in pending:
            apply_migration(engine, filepath, migration_num, dry_run)
        return len(pending)
    finally:
        engine.dispose()


def main(argv: Sequence[str] | None = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Apply timecard migrations")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_sync,
        help="Database URL (sync driver)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be applied without executing",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    target = args.database_url.split("@")[-1]
    logger.info("Timecard migration runner %s, database: %s", settings.engine_version, target)

    try:
        count = run(args.database_url, dry_run=args.dry_run)
    except MigrationLedgerError as e:
        logger.error("Migration ledger inconsistent: %s", e)
        return 2
    except SQLAlchemyError as e:
        logger.error("Migration failed: %s", e)
        return 1

    logger.info("%s: %d", "Planned" if args.dry_run else "Applied", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
