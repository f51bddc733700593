"""SQLite-backed persistent tier of the embedding cache.

Vectors are stored as raw float64 bytes (``numpy.ndarray.tobytes``) so a
round trip returns bit-identical values.  A single ``aiosqlite``
connection serializes every statement, which makes concurrent ingestion
workers safe without extra locking; duplicate writes are idempotent
``INSERT OR REPLACE``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

import aiosqlite
import numpy as np
import structlog

from ragcore.interfaces.cache_backend import ICacheBackend
from ragcore.models.embedding import CacheEntry
from ragcore.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/embedding_cache.db")

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS embedding_cache (
    cache_key     TEXT    PRIMARY KEY,
    vector        BLOB    NOT NULL,
    dimension     INTEGER NOT NULL,
    created_at    TEXT    NOT NULL,
    access_count  INTEGER NOT NULL DEFAULT 0
);
"""

_UPSERT_SQL = """\
INSERT OR REPLACE INTO embedding_cache (cache_key, vector, dimension, created_at, access_count)
VALUES (?, ?, ?, ?, ?);
"""

_SELECT_SQL = """\
SELECT cache_key, vector, created_at, access_count
FROM embedding_cache
WHERE cache_key = ?;
"""

_TOUCH_SQL = "UPDATE embedding_cache SET access_count = access_count + 1 WHERE cache_key = ?;"
_SELECT_ALL_SQL = "SELECT cache_key, vector, created_at, access_count FROM embedding_cache;"
_COUNT_SQL = "SELECT COUNT(*) FROM embedding_cache;"


def _encode(vector: list[float]) -> bytes:
    return np.asarray(vector, dtype=np.float64).tobytes()


def _decode(blob: bytes) -> list[float]:
    return np.frombuffer(blob, dtype=np.float64).tolist()


class SQLiteCacheBackend(ICacheBackend):
    """Embedding-cache tier persisted in a SQLite file."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = str(db_path)
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        if self._db is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.execute(_CREATE_TABLE_SQL)
        await self._db.commit()
        logger.info("embedding_cache_db_initialized", path=self._db_path)

    async def close(self) -> None:
        if self._db is None:
            return
        await self._db.close()
        self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise ConfigurationError(
                message="Embedding cache is not open; await open() first", provider_name="sqlite"
            )
        return self._db

    async def get(self, key: str) -> CacheEntry | None:
        db = self._conn()
        async with db.execute(_SELECT_SQL, (key,)) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        await db.execute(_TOUCH_SQL, (key,))
        await db.commit()
        return CacheEntry(
            key=row[0],
            vector=_decode(row[1]),
            created_at=datetime.fromisoformat(row[2]),
            access_count=row[3] + 1,
        )

    async def put(self, entry: CacheEntry) -> None:
        db = self._conn()
        await db.execute(
            _UPSERT_SQL,
            (
                entry.key,
                _encode(entry.vector),
                len(entry.vector),
                entry.created_at.isoformat(),
                entry.access_count,
            ),
        )
        await db.commit()

    async def delete(self, keys: list[str]) -> int:
        if not keys:
            return 0
        db = self._conn()
        removed = 0
        for start in range(0, len(keys), 500):
            batch = keys[start : start + 500]
            placeholders = ",".join("?" for _ in batch)
            cursor = await db.execute(
                f"DELETE FROM embedding_cache WHERE cache_key IN ({placeholders});",
                batch,
            )
            removed += cursor.rowcount
        await db.commit()
        return removed

    async def iter_entries(self) -> AsyncIterator[CacheEntry]:
        db = self._conn()
        async with db.execute(_SELECT_ALL_SQL) as cursor:
            rows = await cursor.fetchall()
        for row in rows:
            yield CacheEntry(
                key=row[0],
                vector=_decode(row[1]),
                created_at=datetime.fromisoformat(row[2]),
                access_count=row[3],
            )

    async def count(self) -> int:
        db = self._conn()
        async with db.execute(_COUNT_SQL) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0
