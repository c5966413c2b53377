"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from webhook_bridge.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS pairing_requests (
    channel         TEXT    NOT NULL,
    sender_id       TEXT    NOT NULL,
    code            TEXT    NOT NULL,
    sender_name     TEXT,
    created_at      INTEGER NOT NULL,
    expires_at      INTEGER NOT NULL,
    PRIMARY KEY (channel, sender_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_pairing_code
    ON pairing_requests(channel, code);

CREATE TABLE IF NOT EXISTS allow_from (
    channel         TEXT    NOT NULL,
    sender_id       TEXT    NOT NULL,
    approved_at     INTEGER NOT NULL,
    PRIMARY KEY (channel, sender_id)
);

CREATE TABLE IF NOT EXISTS sessions (
    session_key     TEXT    PRIMARY KEY,
    account_id      TEXT    NOT NULL,
    channel         TEXT    NOT NULL,
    sender_id       TEXT    NOT NULL,
    sender_name     TEXT,
    created_at      INTEGER NOT NULL,
    updated_at      INTEGER NOT NULL,
    last_message_id TEXT
);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
