"""
Schema Manager — linear, versioned, idempotent migrations.

Migrations are ``.sql`` files named ``NNN_description.sql`` in
``knowmem/migrations/``.  The applied version lives in SQLite's
``PRAGMA user_version``.  Each pending file runs in its own transaction
together with the version bump, strictly in ascending order:

    BEGIN IMMEDIATE;
    <migration DDL/DML>
    PRAGMA user_version = NNN;
    COMMIT;

Migration files must not contain their own BEGIN/COMMIT.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from knowmem.db import Database
from knowmem.errors import MigrationError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_MIGRATION_NAME_RE = re.compile(r"^(\d+)_(.+)\.sql$")


@dataclass(frozen=True)
class Migration:
    """One numbered migration file."""

    version: int
    name: str
    path: Path

    @property
    def label(self) -> str:
        return f"{self.version:03d}_{self.name}"

    def read_sql(self) -> str:
        return self.path.read_text(encoding="utf-8")


def discover_migrations(
    directory: Optional[Union[str, Path]] = None,
) -> List[Migration]:
    """List migration files sorted by numeric version.

    Raises:
        MigrationError: a ``.sql`` file does not follow ``NNN_name.sql``, or
            two files share a version number.
    """
    root = Path(directory) if directory is not None else MIGRATIONS_DIR
    if not root.is_dir():
        return []

    migrations: List[Migration] = []
    seen = {}
    for path in sorted(root.glob("*.sql")):
        match = _MIGRATION_NAME_RE.match(path.name)
        if match is None:
            raise MigrationError(
                f"Invalid migration filename: {path.name}. "
                "Expected format: 001_name.sql",
                {"file": path.name},
            )
        version = int(match.group(1))
        if version in seen:
            raise MigrationError(
                f"Duplicate migration version {version}: "
                f"{seen[version]} and {path.name}",
                {"file": path.name},
            )
        seen[version] = path.name
        migrations.append(Migration(version=version, name=match.group(2), path=path))
    migrations.sort(key=lambda m: m.version)
    return migrations


def get_schema_version(db: Database) -> int:
    """Current applied schema version (0 = empty database)."""
    row = db.query_one("PRAGMA user_version")
    return int(row[0]) if row else 0


def pending_migrations(
    db: Database, directory: Optional[Union[str, Path]] = None,
) -> List[str]:
    """Labels (``NNN_name``) of migrations not yet applied."""
    current = get_schema_version(db)
    return [m.label for m in discover_migrations(directory) if m.version > current]


def migrate(
    db: Database, directory: Optional[Union[str, Path]] = None,
) -> List[Migration]:
    """Apply every pending migration in order. Returns the ones applied.

    Re-running with nothing pending is a no-op.
    """
    migrations = discover_migrations(directory)
    current = get_schema_version(db)
    pending = [m for m in migrations if m.version > current]
    if not pending:
        logger.debug(f"Schema up to date (version {current})")
        return []

    for migration in pending:
        script = (
            "BEGIN IMMEDIATE;\n"
            f"{migration.read_sql()}\n"
            f"PRAGMA user_version = {migration.version};\n"
            "COMMIT;\n"
        )
        db.executescript(script)
        logger.info(f"Applied migration {migration.label}")
    return pending


def reset_schema(
    db: Database, directory: Optional[Union[str, Path]] = None,
) -> List[Migration]:
    """Drop the knowledge table and its index, then migrate from version 0.

    Destroys all data. Intended for tests and development.
    """
    with db.transaction():
        db.execute("DROP TABLE IF EXISTS knowledge_fts")
        db.execute("DROP TABLE IF EXISTS knowledge")
        db.execute("PRAGMA user_version = 0")
    logger.warning(f"Schema reset: {db.path}")
    return migrate(db, directory)
