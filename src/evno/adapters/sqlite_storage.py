"""SQLite identity store adapter.

Implements the core IdentityStorePort using a single SQLite file. One writer
per path: the watcher that opened the store is the only one touching it.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

from evno.core.config import DEFAULT_CACHE_PATH
from evno.core.errors import StoreOpenError

LOGGER = logging.getLogger(__name__)

PAGE_SIZE = 512


class SQLiteIdentityStore:
    """Persistent "seen" set keyed by dedup key."""

    def __init__(self, db_path: str = DEFAULT_CACHE_PATH) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def path(self) -> str:
        return self._db_path

    def open(self) -> "SQLiteIdentityStore":
        """Open or create the backing file, creating parent directories.

        Tables:
        - seen: dedup keys already delivered, with first_seen for pruning
        """

        if self._conn is not None:
            return self

        try:
            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            try:
                # page_size only takes effect before the first table exists.
                conn.execute(f"PRAGMA page_size = {PAGE_SIZE}")
                with conn:
                    conn.execute(
                        """
                        CREATE TABLE IF NOT EXISTS seen (
                            key TEXT PRIMARY KEY,
                            first_seen TIMESTAMP NOT NULL
                        )
                        """
                    )
            except sqlite3.Error:
                conn.close()
                raise
        except (OSError, sqlite3.Error) as exc:
            raise StoreOpenError(f"Cannot open identity store at {self._db_path}: {exc}") from exc

        self._conn = conn
        LOGGER.debug("Identity store ready at %s", self._db_path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "SQLiteIdentityStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Identity store is not open")
        return self._conn

    def has(self, key: str) -> bool:
        """Check if a key has already been marked."""

        row = self._connection().execute(
            "SELECT 1 FROM seen WHERE key = ?",
            (key,),
        ).fetchone()
        return row is not None

    def mark_seen(self, key: str) -> None:
        """Insert a key if it does not exist."""

        now = datetime.now(timezone.utc)
        conn = self._connection()
        with conn:
            conn.execute(
                "INSERT OR IGNORE INTO seen (key, first_seen) VALUES (?, ?)",
                (key, now.isoformat()),
            )

    def count(self) -> int:
        row = self._connection().execute("SELECT COUNT(*) AS total FROM seen").fetchone()
        return int(row["total"])

    def prune(self, ttl_days: int) -> int:
        """Delete keys older than the horizon and return the number removed."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=ttl_days)
        conn = self._connection()
        with conn:
            cur = conn.execute(
                "DELETE FROM seen WHERE first_seen < ?",
                (cutoff.isoformat(),),
            )
        return cur.rowcount


def open_identity_store(path: str = DEFAULT_CACHE_PATH) -> SQLiteIdentityStore:
    """Open a store, raising StoreOpenError if the file is unusable."""

    return SQLiteIdentityStore(path).open()
