"""
SQLite-backed file hash cache.

Records the content hash each file had when it was last indexed, so that a
scan can skip files whose content has not changed.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)


class CacheStore:
    """
    Durable map of file path to content hash.

    One database per workspace; all operations are idempotent.
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS file_hashes (
        file_path TEXT PRIMARY KEY,
        content_hash TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """

    def __init__(self, config: "Config", db_path: Path | None = None) -> None:
        """
        Initialize the cache store.

        Args:
            config: codeindex configuration.
            db_path: Override for the database location.
        """
        self.config = config
        self.db_path = db_path or config.cache_db_path
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        logger.info("Initializing cache store", db_path=str(self.db_path))
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")
        await self._db.executescript(self.SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Cache store closed")

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Cache store not initialized")
        return self._db

    async def get_hash(self, file_path: str) -> str | None:
        """Get the recorded hash for a file."""
        async with self._conn().execute(
            "SELECT content_hash FROM file_hashes WHERE file_path = ?",
            (file_path,),
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def update_hash(self, file_path: str, content_hash: str) -> None:
        """Record the hash of an indexed file."""
        db = self._conn()
        async with self._lock:
            await db.execute(
                """
                INSERT OR REPLACE INTO file_hashes (file_path, content_hash, updated_at)
                VALUES (?, ?, ?)
                """,
                (file_path, content_hash, datetime.now(timezone.utc).isoformat()),
            )
            await db.commit()

    async def delete_hash(self, file_path: str) -> None:
        """Forget a file."""
        db = self._conn()
        async with self._lock:
            await db.execute(
                "DELETE FROM file_hashes WHERE file_path = ?",
                (file_path,),
            )
            await db.commit()

    async def get_all_hashes(self) -> dict[str, str]:
        """Get every recorded file hash."""
        async with self._conn().execute(
            "SELECT file_path, content_hash FROM file_hashes"
        ) as cursor:
            rows = await cursor.fetchall()
            return {row[0]: row[1] for row in rows}

    async def clear(self) -> None:
        """Forget every file."""
        db = self._conn()
        async with self._lock:
            await db.execute("DELETE FROM file_hashes")
            await db.commit()
        logger.info("Cache cleared", db_path=str(self.db_path))

    async def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        async with self._conn().execute("SELECT COUNT(*) FROM file_hashes") as cursor:
            row = await cursor.fetchone()

        return {
            "db_path": str(self.db_path),
            "tracked_files": row[0] if row else 0,
        }
