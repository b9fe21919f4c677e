"""
SQLite database for image job records.

Each upload gets one row carrying its status (pending/processing/completed/failed)
and, once processed, the URL of the result. Connections are opened per call in
WAL mode, so the API threads and the worker thread can share one file.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import JobNotFoundError
from .models import JobRecord, JobStatus, JobStatusView
from .utils import ensure_directory, utcnow


DEFAULT_DB_PATH = Path("data/jobs.db")


def _serialize_datetime(dt: datetime) -> str:
    return dt.isoformat()


def _deserialize_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s)


class JobDatabase:
    """
    SQLite-backed job record store.

    Status updates are unconditional (last writer wins). The worker reads the
    current status first and never runs a job whose record is already terminal.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        ensure_directory(self.db_path.parent)
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with proper settings."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS images (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    source_key TEXT NOT NULL,
                    source_url TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    content_type TEXT NOT NULL,
                    width INTEGER NOT NULL,
                    height INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    result_url TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_images_owner_created
                ON images(owner_id, created_at DESC)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_images_status
                ON images(status)
            """)

    def create(self, record: JobRecord) -> str:
        """
        Insert a new job record.

        Returns:
            The record id
        """
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO images (
                    id, owner_id, filename, source_key, source_url, size,
                    content_type, width, height, status, result_url, error,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.owner_id,
                record.filename,
                record.source_key,
                record.source_url,
                record.size,
                record.content_type,
                record.width,
                record.height,
                record.status.value,
                record.result_url,
                record.error,
                _serialize_datetime(record.created_at),
                _serialize_datetime(record.updated_at),
            ))
        return record.id

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        result_url: Optional[str] = None,
        error: Optional[str] = None,
        **fields: Any,
    ) -> None:
        """
        Overwrite a job's status, result URL and error.

        Args:
            job_id: The job ID
            status: New status value
            result_url: Result URL; cleared when None
            error: Failure message; cleared when None
            **fields: Optional size/content_type/width/height describing the result

        Raises:
            JobNotFoundError: If no row matches ``job_id``
        """
        allowed = {"size", "content_type", "width", "height"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown job fields: {', '.join(sorted(unknown))}")

        updates = ["status = ?", "result_url = ?", "error = ?", "updated_at = ?"]
        values: List[Any] = [
            JobStatus(status).value,
            result_url,
            error,
            _serialize_datetime(utcnow()),
        ]
        for name in sorted(fields):
            updates.append(f"{name} = ?")
            values.append(fields[name])
        values.append(job_id)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE images SET {', '.join(updates)} WHERE id = ?",
                values,
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

    def get_status(self, job_id: str) -> JobStatusView:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT status, result_url FROM images WHERE id = ?", (job_id,)
            ).fetchone()
        if not row:
            raise JobNotFoundError(job_id)
        return JobStatusView(status=JobStatus(row["status"]), result_url=row["result_url"] or None)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM images WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_jobs(self, owner_id: str) -> List[JobRecord]:
        """List an owner's jobs, newest first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM images WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def delete_job(self, job_id: str, owner_id: str) -> bool:
        """
        Delete a job record owned by ``owner_id``.

        Returns:
            True if deleted, False if not found or owned by someone else
        """
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM images WHERE id = ? AND owner_id = ?", (job_id, owner_id)
            )
            return cursor.rowcount > 0

    def _row_to_record(self, row: sqlite3.Row) -> JobRecord:
        data: Dict[str, Any] = dict(row)
        data["status"] = JobStatus(data["status"])
        data["created_at"] = _deserialize_datetime(data["created_at"])
        data["updated_at"] = _deserialize_datetime(data["updated_at"])
        return JobRecord(**data)
