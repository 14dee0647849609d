"""Tests for the forward-only migration runner."""

from pathlib import Path

import pytest
from sqlalchemy import create_engine, text

from timecard_engine import migrate
from timecard_engine.errors import MigrationLedgerError


def touch(directory: Path, *names: str) -> list[Path]:
    paths = []
    for name in names:
        path = directory / name
        path.write_text("SELECT 1", encoding="utf-8")
        paths.append(path)
    return paths


class TestMigrationFiles:
    """Bundled migration files."""

    def test_bundled_files_in_order(self):
        files = migrate.get_migration_files()

        assert [f.name for f in files] == [
            "001_create_timecard_tables.sql",
            "002_audit_log_append_only.sql",
            "003_add_pay_and_admin_notes.sql",
        ]

    def test_parse_number(self):
        assert migrate.parse_migration_number(Path("014_add_index.sql")) == 14

    def test_unnumbered_file(self):
        with pytest.raises(MigrationLedgerError):
            migrate.parse_migration_number(Path("add_index.sql"))

    def test_missing_directory(self, tmp_path):
        with pytest.raises(MigrationLedgerError):
            migrate.get_migration_files(tmp_path / "nope")


class TestPlan:
    """Which migrations are pending, and when the ledger is inconsistent."""

    def test_fresh_database(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "002_b.sql")

        assert migrate.plan_migrations(files, set()) == [(1, files[0]), (2, files[1])]

    def test_partially_applied(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "002_b.sql")

        assert migrate.plan_migrations(files, {1}) == [(2, files[1])]

    def test_up_to_date(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "002_b.sql")

        assert migrate.plan_migrations(files, {1, 2}) == []

    def test_applied_without_file(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "002_b.sql")

        with pytest.raises(MigrationLedgerError, match="no file"):
            migrate.plan_migrations(files, {1, 2, 5})

    def test_pending_older_than_applied(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "002_b.sql", "003_c.sql")

        with pytest.raises(MigrationLedgerError, match="older"):
            migrate.plan_migrations(files, {1, 3})

    def test_duplicate_numbers(self, tmp_path):
        files = touch(tmp_path, "001_a.sql", "001_b.sql")

        with pytest.raises(MigrationLedgerError, match="share number"):
            migrate.plan_migrations(files, set())


class TestRun:
    """Applying migrations against SQLite."""

    def test_applies_once(self, tmp_path):
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        (migrations / "001_widgets.sql").write_text(
            "CREATE TABLE widgets (id INTEGER PRIMARY KEY)", encoding="utf-8"
        )
        url = f"sqlite:///{tmp_path / 'ledger.db'}"

        assert migrate.run(url, migrations_dir=migrations) == 1
        assert migrate.run(url, migrations_dir=migrations) == 0

        engine = create_engine(url)
        with engine.connect() as conn:
            applied = conn.execute(
                text("SELECT migration_number, filename FROM timecard_migration_history")
            ).all()
            conn.execute(text("SELECT COUNT(*) FROM widgets"))
        engine.dispose()
        assert [tuple(row) for row in applied] == [(1, "001_widgets.sql")]

    def test_dry_run_applies_nothing(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'dry.db'}"

        assert migrate.main(["--database-url", url, "--dry-run"]) == 0

        engine = create_engine(url)
        with engine.connect() as conn:
            count = conn.execute(
                text("SELECT COUNT(*) FROM timecard_migration_history")
            ).scalar_one()
        engine.dispose()
        assert count == 0

    def test_inconsistent_ledger_exit_code(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'bad.db'}"
        engine = create_engine(url)
        with engine.begin() as conn:
            conn.execute(text(migrate.HISTORY_DDL))
            conn.execute(
                text(
                    "INSERT INTO timecard_migration_history (migration_number, filename) "
                    "VALUES (99, '099_gone.sql')"
                )
            )
        engine.dispose()

        assert migrate.main(["--database-url", url]) == 2
