"""
SQLite database handle shared by the data access layer, the audit log and
the schema reconciler.

Invariants:
    - One database file holds every tenant; rows are separated by tenant_id
    - Connections are opened per operation and always closed
    - Multi-statement writes run inside BEGIN IMMEDIATE ... COMMIT and roll
      back on any exception

How to change safely:
    - PRAGMAs apply per connection; add new ones in connect()
    - Keep isolation_level=None so transactions stay explicit
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


class Database:
    """File-backed SQLite database.

    Thread safety:
        Each operation opens its own connection. SQLite serializes writers;
        WAL mode lets readers proceed during writes.

    Example:
        >>> db = Database("/var/lib/metasaas/app.db")
        >>> with db.transaction() as conn:
        ...     conn.execute("INSERT INTO tasks (id, tenant_id) VALUES (?, ?)", (id_, tenant))
    """

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -64000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages

    @contextmanager
    def connect(
        self, foreign_keys: bool = True, legacy_alter_table: bool = False
    ) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Args:
            foreign_keys: Enforce foreign key constraints on this connection
            legacy_alter_table: Leave other tables' REFERENCES clauses alone on rename

        Yields:
            SQLite connection in autocommit mode
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            conn.execute(f"PRAGMA cache_size = {int(self.cache_size_pages)}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute(f"PRAGMA foreign_keys = {'ON' if foreign_keys else 'OFF'}")
            if legacy_alter_table:
                conn.execute("PRAGMA legacy_alter_table = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, foreign_keys: bool = True, legacy_alter_table: bool = False
    ) -> Iterator[sqlite3.Connection]:
        """Open a connection inside an immediate write transaction."""
        with self.connect(foreign_keys=foreign_keys, legacy_alter_table=legacy_alter_table) as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
