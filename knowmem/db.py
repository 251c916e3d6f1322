"""
Knowledge Store — SQLite Storage Engine

One file, one writer at a time, many readers:

    journal_mode=WAL      concurrent readers alongside the single writer
    foreign_keys=ON
    synchronous=NORMAL    durable at checkpoint, fast commits
    busy_timeout          bounded wait for the writer lock (then fail)
    mmap_size             memory-mapped reads

The connection runs in autocommit mode (``isolation_level=None``); every
multi-statement write goes through ``Database.transaction()`` which issues
``BEGIN IMMEDIATE`` and commits or rolls back as a unit.

Thread safety: sqlite3 check_same_thread=False with an explicit re-entrant
lock, so a handler may run queries inside its own transaction.

Author: Olivier Vitrac, PhD, HDR | olivier.vitrac@adservio.fr | Adservio
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence

from knowmem.config import StoreConfig

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"


class Database:
    """
    Owned handle on the SQLite database.

    Created by ``open_database()``; closed by ``close()`` or by leaving a
    ``with`` block.  Handlers receive it by injection and never close it.
    """

    def __init__(self, db_path: str = MEMORY_DB, config: Optional[StoreConfig] = None):
        """Open the SQLite connection and apply engine pragmas.

        Args:
            db_path: SQLite database path (or ":memory:" for in-memory).
            config: Engine settings. Defaults to ``StoreConfig()``; its
                ``db_path`` field is ignored in favor of *db_path*.
        """
        cfg = config or StoreConfig()
        self._db_path = db_path
        self._lock = threading.RLock()
        # Auto-create parent directory for disk-backed databases.
        if db_path != MEMORY_DB:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = sqlite3.connect(
            db_path,
            timeout=cfg.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        try:
            self._configure(cfg)
        except sqlite3.Error:
            self.close()
            raise
        logger.info(f"Database opened: {db_path}")

    def _configure(self, cfg: StoreConfig) -> None:
        conn = self._conn
        if cfg.wal_mode and self._db_path != MEMORY_DB:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA synchronous={cfg.synchronous.upper()}")
        conn.execute(f"PRAGMA busy_timeout={int(cfg.busy_timeout_ms)}")
        conn.execute(f"PRAGMA mmap_size={int(cfg.mmap_size)}")

    # -- Lifecycle ---------------------------------------------------------

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        """Raw sqlite3 connection (schema manager, tests)."""
        if self._conn is None:
            raise sqlite3.ProgrammingError("Cannot operate on a closed database.")
        return self._conn

    def close(self) -> None:
        """Close the underlying SQLite connection. Safe to call twice."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug(f"Database closed: {self._db_path}")

    def __enter__(self) -> Database:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # -- Statements --------------------------------------------------------

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        """Run a SELECT and return all rows."""
        with self._lock:
            return self.connection.execute(sql, tuple(params)).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        """Run a SELECT and return the first row, or None."""
        with self._lock:
            return self.connection.execute(sql, tuple(params)).fetchone()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        """Run a single write statement."""
        with self._lock:
            return self.connection.execute(sql, tuple(params))

    def executescript(self, script: str) -> None:
        """Run a multi-statement script that manages its own transaction.

        sqlite3 commits any pending transaction before a script, so scripts
        carry their own ``BEGIN``/``COMMIT``.  A failure part-way rolls back.
        """
        with self._lock:
            conn = self.connection
            try:
                conn.executescript(script)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """``BEGIN IMMEDIATE`` … ``COMMIT``; ``ROLLBACK`` on any exception.

        IMMEDIATE takes the writer lock up front, so a concurrent writer
        waits at most ``busy_timeout`` here instead of failing mid-way.
        """
        with self._lock:
            conn = self.connection
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield self
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")


def open_database(
    db_path: str = MEMORY_DB,
    config: Optional[StoreConfig] = None,
    *,
    migrate: bool = True,
) -> Database:
    """Open (and by default migrate) a knowledge database.

    Creates parent directories as needed.  The caller owns the returned
    handle and must close it.
    """
    db = Database(db_path, config)
    if migrate:
        from knowmem.schema import migrate as run_migrations
        try:
            run_migrations(db)
        except BaseException:
            db.close()
            raise
    return db
