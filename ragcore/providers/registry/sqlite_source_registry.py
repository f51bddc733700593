"""SQLite-backed source and job registry.

Persists :class:`SourceDocument` records (hash, version, status, config
fingerprint) and :class:`IngestionJob` history to ``data/registry.db``.
Uses ``aiosqlite`` for async I/O with one short-lived connection per call.
Jobs are stored as their pydantic JSON dump so results, failures and
cause chains round-trip without a column per field.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import aiosqlite
import structlog

from ragcore.interfaces.source_registry import ISourceRegistry
from ragcore.models.ingestion import IngestionJob, JobStatus, ProcessingStatus, SourceDocument
from ragcore.utils.errors import RegistryError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/registry.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS sources (
    source_id           TEXT PRIMARY KEY,
    hash                TEXT    NOT NULL DEFAULT '',
    version             INTEGER NOT NULL DEFAULT 1,
    processing_status   TEXT    NOT NULL,
    filename            TEXT    NOT NULL DEFAULT '',
    total_pages         INTEGER NOT NULL DEFAULT 0,
    config_fingerprint  TEXT    NOT NULL DEFAULT '',
    chunk_count         INTEGER NOT NULL DEFAULT 0,
    updated_at          TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS jobs (
    job_id      TEXT PRIMARY KEY,
    source_id   TEXT NOT NULL,
    status      TEXT NOT NULL,
    started_at  TEXT NOT NULL,
    payload     TEXT NOT NULL
);
""",
    "CREATE INDEX IF NOT EXISTS idx_jobs_source ON jobs(source_id);",
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);",
]

_UPSERT_SOURCE_SQL = """\
INSERT OR REPLACE INTO sources
    (source_id, hash, version, processing_status, filename, total_pages,
     config_fingerprint, chunk_count, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SOURCE_COLUMNS = (
    "source_id, hash, version, processing_status, filename, total_pages, "
    "config_fingerprint, chunk_count, updated_at"
)


def _row_to_source(row: aiosqlite.Row) -> SourceDocument:
    return SourceDocument(
        source_id=row["source_id"],
        hash=row["hash"],
        version=row["version"],
        processing_status=ProcessingStatus(row["processing_status"]),
        filename=row["filename"],
        total_pages=row["total_pages"],
        config_fingerprint=row["config_fingerprint"],
        chunk_count=row["chunk_count"],
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class SQLiteSourceRegistry(ISourceRegistry):
    """SQLite persistence for sources and ingestion jobs."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create the sources and jobs tables if they don't exist."""
        if self._initialized:
            return
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                for sql in _CREATE_TABLES_SQL:
                    await db.execute(sql)
                await db.commit()
        except aiosqlite.Error as exc:
            raise RegistryError(
                message=f"Failed to initialize registry at {self._db_path}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        self._initialized = True
        logger.info("registry_db_initialized", path=str(self._db_path))

    async def close(self) -> None:
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise RegistryError(
                message="Registry used before initialize()",
                provider_name=self.get_provider_name(),
            )

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    async def get_source(self, source_id: str) -> SourceDocument | None:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE source_id = ?",
                    (source_id,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to read source {source_id}: {exc}", self.get_provider_name()) from exc
        return _row_to_source(row) if row else None

    async def save_source(self, source: SourceDocument) -> None:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    _UPSERT_SOURCE_SQL,
                    (
                        source.source_id,
                        source.hash,
                        source.version,
                        source.processing_status.value,
                        source.filename,
                        source.total_pages,
                        source.config_fingerprint,
                        source.chunk_count,
                        source.updated_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise RegistryError(
                f"Failed to save source {source.source_id}: {exc}", self.get_provider_name()
            ) from exc
        logger.debug(
            "registry_source_saved",
            source_id=source.source_id,
            version=source.version,
            status=source.processing_status.value,
        )

    async def delete_source(self, source_id: str) -> bool:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute("DELETE FROM sources WHERE source_id = ?", (source_id,))
                await db.commit()
                deleted = cursor.rowcount > 0
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to delete source {source_id}: {exc}", self.get_provider_name()) from exc
        return deleted

    async def list_sources(self) -> list[SourceDocument]:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(f"SELECT {_SOURCE_COLUMNS} FROM sources ORDER BY source_id")
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to list sources: {exc}", self.get_provider_name()) from exc
        return [_row_to_source(r) for r in rows]

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def save_job(self, job: IngestionJob) -> None:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    "INSERT OR REPLACE INTO jobs (job_id, source_id, status, started_at, payload) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        job.job_id,
                        job.source_id,
                        job.status.value,
                        job.started_at.isoformat(),
                        job.model_dump_json(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to save job {job.job_id}: {exc}", self.get_provider_name()) from exc

    async def get_job(self, job_id: str) -> IngestionJob | None:
        self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute("SELECT payload FROM jobs WHERE job_id = ?", (job_id,))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to read job {job_id}: {exc}", self.get_provider_name()) from exc
        return IngestionJob.model_validate_json(row[0]) if row else None

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
        limit: int = 100,
    ) -> list[IngestionJob]:
        self._ensure_initialized()
        clauses: list[str] = []
        params: list[str | int] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(JobStatus(status).value)
        if source_id is not None:
            clauses.append("source_id = ?")
            params.append(source_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        try:
            async with aiosqlite.connect(str(self._db_path)) as db:
                cursor = await db.execute(
                    f"SELECT payload FROM jobs {where} ORDER BY started_at DESC, job_id LIMIT ?",
                    params,
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise RegistryError(f"Failed to list jobs: {exc}", self.get_provider_name()) from exc
        return [IngestionJob.model_validate_json(r[0]) for r in rows]

    def get_provider_name(self) -> str:
        return "sqlite_registry"
