"""Async SQLite database layer for PingPay.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))

        # Enable WAL mode for better concurrent read performance.
        await self._conn.execute("PRAGMA journal_mode=WAL;")

        # Other service instances may hold the write lock briefly.
        await self._conn.execute("PRAGMA busy_timeout=5000;")

        # Return rows as ``sqlite3.Row`` so we can convert to dicts easily.
        self._conn.row_factory = sqlite3.Row

        # Enable foreign key enforcement.
        await self._conn.execute("PRAGMA foreign_keys=ON;")

        await self._migrate()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit.

        Returns the raw ``aiosqlite.Cursor`` so callers can inspect
        ``lastrowid``, ``rowcount``, etc.
        """
        assert self._conn is not None, "Database not connected. Call connect() first."
        try:
            cursor = await self._conn.execute(sql, params)
        except aiosqlite.Error:
            await self._conn.rollback()
            raise
        await self._conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Execute a query and return the first row as a dict, or ``None``."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a query and return all rows as a list of dicts."""
        assert self._conn is not None, "Database not connected. Call connect() first."
        cursor = await self._conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables if they do not already exist."""
        assert self._conn is not None

        await self._conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS wallets (
                handle TEXT PRIMARY KEY,
                address TEXT UNIQUE NOT NULL,
                private_key TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL
            );

            CREATE TABLE IF NOT EXISTS transfers (
                id TEXT PRIMARY KEY,
                sender_address TEXT,
                sender_handle TEXT,
                recipient_handle TEXT NOT NULL,
                recipient_address TEXT NOT NULL,
                amount TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                claim_token TEXT UNIQUE NOT NULL,
                tx_hash TEXT,
                block_number INTEGER,
                failure_reason TEXT,
                created_at TIMESTAMP NOT NULL,
                confirmed_at TIMESTAMP,
                claimed_at TIMESTAMP,
                FOREIGN KEY (recipient_handle) REFERENCES wallets(handle)
            );

            CREATE INDEX IF NOT EXISTS idx_transfers_sender_address
                ON transfers (sender_address);
            CREATE INDEX IF NOT EXISTS idx_transfers_sender_handle
                ON transfers (sender_handle);
            CREATE INDEX IF NOT EXISTS idx_transfers_recipient
                ON transfers (recipient_handle, status);
            CREATE UNIQUE INDEX IF NOT EXISTS idx_transfers_tx_hash
                ON transfers (tx_hash) WHERE tx_hash IS NOT NULL;

            CREATE TABLE IF NOT EXISTS chat_channels (
                handle TEXT PRIMARY KEY,
                chat_id INTEGER NOT NULL,
                updated_at TIMESTAMP NOT NULL
            );
            """
        )
        await self._conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(data_dir: Path, filename: str = "ping_pay.db") -> Database:
    """Return a :class:`Database` instance pointing at ``data_dir/<filename>``.

    The caller is responsible for calling :meth:`Database.connect` before
    using the returned instance.
    """
    return Database(Path(data_dir) / filename)
