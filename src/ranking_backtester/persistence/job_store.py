"""
JobStore — SQLite-based persistence for search and detail jobs.

Stores job metadata, status, request parameters and results via aiosqlite,
so the HTTP layer can answer status polls for background phase runs.
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any

import aiosqlite

from ranking_backtester.logging import get_logger

logger = get_logger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS search_jobs (
    job_id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL DEFAULT 'phase1',
    status TEXT NOT NULL DEFAULT 'pending',
    params_json TEXT NOT NULL DEFAULT '{}',
    result_json TEXT,
    error_message TEXT,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL
)
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_jobs_status ON search_jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created ON search_jobs(created_at);
"""


class JobStore:
    """Async SQLite-backed store for background search jobs."""

    def __init__(self, db_path: str = "data/jobs.db") -> None:
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Create database and tables."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute(CREATE_TABLE_SQL)
        await self._db.executescript(CREATE_INDEX_SQL)
        await self._db.commit()
        logger.info("JobStore initialized", db_path=self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def create(self, job_type: str, params: dict[str, Any] | None = None) -> str:
        """Create a pending job and return its ID."""
        job_id = str(uuid.uuid4())[:12]
        now = datetime.now(timezone.utc).isoformat()

        await self._db.execute(
            """INSERT INTO search_jobs
               (job_id, job_type, status, params_json, created_at, updated_at)
               VALUES (?, ?, 'pending', ?, ?, ?)""",
            (job_id, job_type, json.dumps(params or {}), now, now),
        )
        await self._db.commit()

        logger.info("Job created", job_id=job_id, job_type=job_type)
        return job_id

    async def update_status(
        self,
        job_id: str,
        status: str,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        """Move a job to ``status``, storing the result or error when finished."""
        now = datetime.now(timezone.utc).isoformat()

        if status == "running":
            sql = "UPDATE search_jobs SET status=?, started_at=?, updated_at=? WHERE job_id=?"
            params: tuple = (status, now, now, job_id)
        elif status == "completed":
            sql = """UPDATE search_jobs
                     SET status=?, result_json=?, completed_at=?, updated_at=?
                     WHERE job_id=?"""
            params = (status, json.dumps(result) if result is not None else None, now, now, job_id)
        elif status in ("failed", "cancelled"):
            sql = """UPDATE search_jobs
                     SET status=?, error_message=?, completed_at=?, updated_at=?
                     WHERE job_id=?"""
            params = (status, error, now, now, job_id)
        else:
            sql = "UPDATE search_jobs SET status=?, updated_at=? WHERE job_id=?"
            params = (status, now, job_id)

        await self._db.execute(sql, params)
        await self._db.commit()
        logger.debug("Job status updated", job_id=job_id, status=status)

    async def get(self, job_id: str) -> dict[str, Any] | None:
        async with self._db.execute(
            "SELECT * FROM search_jobs WHERE job_id=?", (job_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return self._row_to_dict(row)

    async def list_jobs(
        self,
        status: str | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """List jobs, newest first, with optional filters."""
        conditions = []
        params: list[Any] = []

        if status:
            conditions.append("status=?")
            params.append(status)
        if job_type:
            conditions.append("job_type=?")
            params.append(job_type)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])

        async with self._db.execute(
            f"SELECT * FROM search_jobs {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            params,
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_dict(r) for r in rows]

    async def delete(self, job_id: str) -> bool:
        cursor = await self._db.execute("DELETE FROM search_jobs WHERE job_id=?", (job_id,))
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Job deleted", job_id=job_id)
        return deleted

    @staticmethod
    def _row_to_dict(row: aiosqlite.Row) -> dict[str, Any]:
        d = dict(row)
        d["params"] = json.loads(d.pop("params_json") or "{}")
        result_json = d.pop("result_json", None)
        if result_json:
            d["result"] = json.loads(result_json)
        return d
