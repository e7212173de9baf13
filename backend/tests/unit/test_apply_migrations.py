import importlib.util
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[3]


@pytest.fixture(scope="module")
def migrations():
	spec = importlib.util.spec_from_file_location("apply_migrations", REPO_ROOT / "scripts" / "apply_migrations.py")
	module = importlib.util.module_from_spec(spec)
	spec.loader.exec_module(module)
	return module


def test_pending_migrations_skips_applied(migrations, tmp_path):
	paths = [tmp_path / name for name in ("0002_levels.sql", "0001_init.sql", "0003_swaps.sql")]
	pending = migrations.pending_migrations(paths, {"0001"})
	assert [version for version, _ in pending] == ["0002", "0003"]


def test_repository_ships_ledger_migration(migrations):
	names = [path.name for path in migrations.MIGRATIONS_DIR.glob("*.sql")]
	assert "0001_metabento_ledger.sql" in names
	sql = (migrations.MIGRATIONS_DIR / "0001_metabento_ledger.sql").read_text()
	for table in ("users", "user_connections", "a_points_transactions", "user_achievements", "user_levels", "token_swaps"):
		assert f"CREATE TABLE IF NOT EXISTS {table}" in sql


def test_resolve_dsn_adds_sslmode(migrations, monkeypatch):
	monkeypatch.setenv("POSTGRES_URL", "postgresql://u:p@db:5432/metabento")
	monkeypatch.setenv("POSTGRES_SSL", "true")
	assert migrations.resolve_dsn() == "postgresql://u:p@db:5432/metabento?sslmode=require"
	monkeypatch.setenv("POSTGRES_SSL", "0")
	assert migrations.resolve_dsn() == "postgresql://u:p@db:5432/metabento"


def test_row_timestamps_follow_insert_order(migrations):
	paths = sorted(migrations.MIGRATIONS_DIR.glob("*.sql"))
	assert [version for version, _ in migrations.pending_migrations(paths, {"0001"})][0] == "0002"
	sql = (migrations.MIGRATIONS_DIR / "0002_clock_timestamp_defaults.sql").read_text()
	for table, column in (
		("user_connections", "created_at"),
		("a_points_transactions", "created_at"),
		("user_achievements", "unlocked_at"),
		("token_swaps", "created_at"),
	):
		assert f"ALTER TABLE {table} ALTER COLUMN {column} SET DEFAULT clock_timestamp();" in sql
