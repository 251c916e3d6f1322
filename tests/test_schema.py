"""
Tests for knowmem.schema and knowmem.db — engine pragmas, transactions,
migration discovery, ordering, idempotence and reset.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

import os
import sqlite3

import pytest

from knowmem.config import StoreConfig
from knowmem.db import Database, open_database
from knowmem.errors import MigrationError
from knowmem.schema import (
    MIGRATIONS_DIR,
    discover_migrations,
    get_schema_version,
    migrate,
    pending_migrations,
    reset_schema,
)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "nested" / "dir" / "memory.db")


@pytest.fixture
def raw_db(db_path):
    """An opened, NOT migrated database."""
    db = open_database(db_path, migrate=False)
    yield db
    db.close()


def _tables(db):
    rows = db.query("SELECT name FROM sqlite_master WHERE type IN ('table', 'trigger')")
    return {r["name"] for r in rows}


# ---------------------------------------------------------------------------
# Storage engine
# ---------------------------------------------------------------------------


class TestDatabase:
    def test_creates_parent_dirs(self, raw_db, db_path):
        assert os.path.isfile(db_path)

    def test_pragmas(self, raw_db):
        assert raw_db.query_one("PRAGMA journal_mode")[0].lower() == "wal"
        assert raw_db.query_one("PRAGMA foreign_keys")[0] == 1
        assert raw_db.query_one("PRAGMA busy_timeout")[0] == 5000
        # NORMAL == 1
        assert raw_db.query_one("PRAGMA synchronous")[0] == 1

    def test_custom_busy_timeout(self, tmp_path):
        cfg = StoreConfig(busy_timeout_ms=1234)
        with Database(str(tmp_path / "a.db"), cfg) as db:
            assert db.query_one("PRAGMA busy_timeout")[0] == 1234

    def test_memory_database(self):
        with open_database(":memory:") as db:
            assert get_schema_version(db) == len(discover_migrations())

    def test_close_idempotent(self, db_path):
        db = open_database(db_path)
        db.close()
        db.close()
        assert not db.is_open
        with pytest.raises(sqlite3.ProgrammingError):
            db.query("SELECT 1")

    def test_context_manager_closes(self, db_path):
        with open_database(db_path) as db:
            assert db.is_open
        assert not db.is_open

    def test_transaction_commits(self, raw_db):
        raw_db.execute("CREATE TABLE t (x INTEGER)")
        with raw_db.transaction():
            raw_db.execute("INSERT INTO t VALUES (1)")
            raw_db.execute("INSERT INTO t VALUES (2)")
        assert raw_db.query_one("SELECT COUNT(*) FROM t")[0] == 2

    def test_transaction_rolls_back(self, raw_db):
        raw_db.execute("CREATE TABLE t (x INTEGER)")
        with pytest.raises(RuntimeError):
            with raw_db.transaction():
                raw_db.execute("INSERT INTO t VALUES (1)")
                raise RuntimeError("boom")
        assert raw_db.query_one("SELECT COUNT(*) FROM t")[0] == 0
        assert not raw_db.connection.in_transaction


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class TestDiscovery:
    def test_bundled_migrations(self):
        migrations = discover_migrations()
        assert [m.version for m in migrations] == [1, 2]
        assert migrations[0].label == "001_create_knowledge"
        assert MIGRATIONS_DIR.is_dir()

    def test_numeric_sort(self, tmp_path):
        (tmp_path / "10_ten.sql").write_text("SELECT 1;")
        (tmp_path / "2_two.sql").write_text("SELECT 1;")
        assert [m.version for m in discover_migrations(tmp_path)] == [2, 10]

    def test_bad_filename(self, tmp_path):
        (tmp_path / "create_things.sql").write_text("SELECT 1;")
        with pytest.raises(MigrationError, match="Invalid migration filename"):
            discover_migrations(tmp_path)

    def test_duplicate_version(self, tmp_path):
        (tmp_path / "001_a.sql").write_text("SELECT 1;")
        (tmp_path / "1_b.sql").write_text("SELECT 1;")
        with pytest.raises(MigrationError, match="Duplicate migration version 1"):
            discover_migrations(tmp_path)

    def test_missing_dir(self, tmp_path):
        assert discover_migrations(tmp_path / "absent") == []


# ---------------------------------------------------------------------------
# Migrate
# ---------------------------------------------------------------------------


class TestMigrate:
    def test_fresh_db(self, raw_db):
        assert get_schema_version(raw_db) == 0
        assert pending_migrations(raw_db) == [
            "001_create_knowledge", "002_create_knowledge_fts",
        ]
        applied = migrate(raw_db)
        assert [m.version for m in applied] == [1, 2]
        assert get_schema_version(raw_db) == 2
        assert {"knowledge", "knowledge_fts", "knowledge_fts_ai",
                "knowledge_fts_bd", "knowledge_fts_bu",
                "knowledge_fts_au"} <= _tables(raw_db)

    def test_rerun_is_noop(self, raw_db):
        migrate(raw_db)
        assert migrate(raw_db) == []
        assert pending_migrations(raw_db) == []
        assert get_schema_version(raw_db) == 2

    def test_partial_then_rest(self, raw_db, tmp_path):
        d = tmp_path / "migs"
        d.mkdir()
        (d / "001_a.sql").write_text("CREATE TABLE a (x INTEGER);")
        assert [m.version for m in migrate(raw_db, d)] == [1]
        (d / "002_b.sql").write_text("CREATE TABLE b (x INTEGER);")
        assert [m.version for m in migrate(raw_db, d)] == [2]
        assert get_schema_version(raw_db) == 2

    def test_failed_migration_rolls_back(self, raw_db, tmp_path):
        d = tmp_path / "migs"
        d.mkdir()
        (d / "001_ok.sql").write_text("CREATE TABLE ok (x INTEGER);")
        (d / "002_bad.sql").write_text(
            "CREATE TABLE half (x INTEGER);\nTHIS IS NOT SQL;"
        )
        with pytest.raises(sqlite3.Error):
            migrate(raw_db, d)
        assert get_schema_version(raw_db) == 1
        assert "half" not in _tables(raw_db)
        assert not raw_db.connection.in_transaction

    def test_rebuild_indexes_existing_rows(self, raw_db, tmp_path):
        # 001 only, insert a row, then 002 must index it
        d = tmp_path / "migs"
        d.mkdir()
        (d / "001_create_knowledge.sql").write_text(
            (MIGRATIONS_DIR / "001_create_knowledge.sql").read_text()
        )
        migrate(raw_db, d)
        raw_db.execute(
            "INSERT INTO knowledge (id, title, content, tags, scope, "
            "normalized_title, content_hash, created_at, updated_at) "
            "VALUES ('x', 'Legacy gateway notes', 'body', '[]', 'global', "
            "'legacy gateway notes', 'h', 't', 't')"
        )
        migrate(raw_db)
        rows = raw_db.query(
            "SELECT rowid FROM knowledge_fts WHERE knowledge_fts MATCH 'gateway*'"
        )
        assert len(rows) == 1


class TestReset:
    def test_reset_clears_data(self, db_path):
        with open_database(db_path) as db:
            db.execute(
                "INSERT INTO knowledge (id, title, content, tags, scope, "
                "normalized_title, content_hash, created_at, updated_at) "
                "VALUES ('x', 't', 'c', '[]', 'global', 't', 'h', 't', 't')"
            )
            applied = reset_schema(db)
            assert [m.version for m in applied] == [1, 2]
            assert db.query_one("SELECT COUNT(*) FROM knowledge")[0] == 0
            assert get_schema_version(db) == 2
