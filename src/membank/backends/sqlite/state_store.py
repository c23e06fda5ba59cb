from __future__ import annotations

import time
from typing import TYPE_CHECKING

from membank.backends.sqlite._db import get_connection
from membank.logging import get_logger

if TYPE_CHECKING:
    import aiosqlite

logger = get_logger("backend.sqlite.state_store")

_CREATE_STATE = """
CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at REAL NOT NULL
);
"""


class SQLiteStateStore:
    """Persistent state store: one SQLite KV table."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @classmethod
    async def create(cls, db_path: str) -> SQLiteStateStore:
        conn = await get_connection(db_path)
        await conn.executescript(_CREATE_STATE)
        await conn.commit()
        logger.debug("Opened SQLite state store at %s", db_path)
        return cls(conn)

    async def get(self, key: str) -> bytes | None:
        async with self._conn.execute(
            "SELECT value FROM state WHERE key = ?", (key,),
        ) as cursor:
            row = await cursor.fetchone()
            return bytes(row[0]) if row else None

    async def set(self, key: str, value: bytes) -> None:
        await self._conn.execute(
            """INSERT INTO state (key, value, updated_at)
               VALUES (?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   updated_at = excluded.updated_at""",
            (key, value, time.time()),
        )
        await self._conn.commit()

    async def delete(self, key: str) -> None:
        await self._conn.execute("DELETE FROM state WHERE key = ?", (key,))
        await self._conn.commit()

    async def exists(self, key: str) -> bool:
        async with self._conn.execute(
            "SELECT 1 FROM state WHERE key = ?", (key,),
        ) as cursor:
            return (await cursor.fetchone()) is not None

    async def close(self) -> None:
        await self._conn.close()
