"""
Tests for the SQLite job record store.
"""

from datetime import timedelta

import pytest

from imageproc_backend.database import JobDatabase
from imageproc_backend.errors import JobNotFoundError
from imageproc_backend.models import JobRecord, JobStatus
from imageproc_backend.utils import utcnow


def _record(job_id, owner_id="user-1", created_at=None):
    created_at = created_at or utcnow()
    return JobRecord(
        id=job_id,
        owner_id=owner_id,
        filename="cat.png",
        source_key=f"originals/{job_id}.png",
        source_url=f"https://b.s3.us-west-2.amazonaws.com/originals/{job_id}.png",
        size=123,
        content_type="image/png",
        width=10,
        height=20,
        created_at=created_at,
        updated_at=created_at,
    )


@pytest.fixture
def db(tmp_path):
    return JobDatabase(tmp_path / "nested" / "jobs.db")


class TestJobDatabase:
    """Tests for record creation and status transitions."""

    def test_creates_parent_directory(self, tmp_path):
        JobDatabase(tmp_path / "a" / "b" / "jobs.db")
        assert (tmp_path / "a" / "b").is_dir()

    def test_new_record_is_pending(self, db):
        db.create(_record("j1"))
        status = db.get_status("j1")
        assert status.status is JobStatus.PENDING
        assert status.result_url is None

    def test_get_job_round_trips_fields(self, db):
        record = _record("j1")
        db.create(record)
        assert db.get_job("j1") == record

    def test_get_missing_job(self, db):
        assert db.get_job("nope") is None
        with pytest.raises(JobNotFoundError) as exc_info:
            db.get_status("nope")
        assert exc_info.value.job_id == "nope"

    def test_completed_records_result(self, db):
        db.create(_record("j1"))
        db.update_status("j1", JobStatus.PROCESSING)
        db.update_status(
            "j1",
            JobStatus.COMPLETED,
            result_url="https://example/processed.jpg",
            size=99,
            content_type="image/jpeg",
            width=5,
            height=10,
        )

        job = db.get_job("j1")
        assert job.status is JobStatus.COMPLETED
        assert job.result_url == "https://example/processed.jpg"
        assert (job.size, job.content_type, job.width, job.height) == (99, "image/jpeg", 5, 10)
        assert job.updated_at >= job.created_at

    def test_failure_clears_result_and_records_error(self, db):
        """A failed job never advertises a result URL."""
        db.create(_record("j1"))
        db.update_status("j1", JobStatus.COMPLETED, result_url="https://example/old.jpg")
        db.update_status("j1", JobStatus.FAILED, error="decode failed")

        job = db.get_job("j1")
        assert job.status is JobStatus.FAILED
        assert job.result_url is None
        assert job.error == "decode failed"

    def test_update_missing_job_raises(self, db):
        with pytest.raises(JobNotFoundError):
            db.update_status("ghost", JobStatus.PROCESSING)

    def test_update_rejects_unknown_fields(self, db):
        db.create(_record("j1"))
        with pytest.raises(ValueError):
            db.update_status("j1", JobStatus.PROCESSING, owner_id="someone-else")


class TestOwnerQueries:
    """Tests for listing and deleting by owner."""

    def test_list_jobs_newest_first(self, db):
        now = utcnow()
        db.create(_record("old", created_at=now - timedelta(minutes=5)))
        db.create(_record("new", created_at=now))
        db.create(_record("other", owner_id="user-2", created_at=now))

        assert [job.id for job in db.list_jobs("user-1")] == ["new", "old"]

    def test_list_jobs_for_unknown_owner(self, db):
        assert db.list_jobs("nobody") == []

    def test_delete_requires_owner(self, db):
        db.create(_record("j1"))
        assert db.delete_job("j1", "user-2") is False
        assert db.get_job("j1") is not None

        assert db.delete_job("j1", "user-1") is True
        assert db.get_job("j1") is None

    def test_delete_missing(self, db):
        assert db.delete_job("ghost", "user-1") is False
