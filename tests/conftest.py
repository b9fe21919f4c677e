"""
Pytest configuration and fixtures for the image processing backend tests.

S3 and Redis are replaced by small in-memory fakes implementing just the client
calls the backend makes, so the suite runs without network access.
"""

import io
import threading

import pytest
import redis
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient
from PIL import Image

from imageproc_backend.blob_store import BlobStore
from imageproc_backend.configuration import load_settings
from imageproc_backend.database import JobDatabase
from imageproc_backend.job_manager import JobManager
from imageproc_backend.main import create_app
from imageproc_backend.models import JobStatus
from imageproc_backend.services import Services
from imageproc_backend.task_queue import TaskQueue
from imageproc_backend.worker import Worker

TEST_BUCKET = "test-bucket"
TEST_REGION = "us-west-2"


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls used by BlobStore."""

    def __init__(self):
        self.objects = {}
        self.fail_get = False
        self.fail_put = False

    def put_object(self, Bucket, Key, Body, ContentType=None):
        if self.fail_put:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "put failed"}}, "PutObject")
        self.objects[(Bucket, Key)] = {"Body": bytes(Body), "ContentType": ContentType}
        return {}

    def get_object(self, Bucket, Key):
        if self.fail_get:
            raise ClientError({"Error": {"Code": "ServiceUnavailable", "Message": "slow down"}}, "GetObject")
        if (Bucket, Key) not in self.objects:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject",
            )
        stored = self.objects[(Bucket, Key)]
        return {"Body": io.BytesIO(stored["Body"]), "ContentType": stored["ContentType"]}

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)
        return {}


class FakeRedis:
    """In-memory stand-in for the redis-py list commands used by TaskQueue."""

    def __init__(self):
        self.lists = {}
        self.down = False
        self.fail_next = 0

    def _check(self):
        if self.fail_next > 0:
            self.fail_next -= 1
            raise redis.exceptions.ConnectionError("Connection refused")
        if self.down:
            raise redis.exceptions.ConnectionError("Connection refused")

    def lpush(self, name, *values):
        self._check()
        items = self.lists.setdefault(name, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    def rpop(self, name):
        self._check()
        items = self.lists.get(name)
        if not items:
            return None
        return items.pop()

    def llen(self, name):
        self._check()
        return len(self.lists.get(name, []))

    def ping(self):
        self._check()
        return True


class CountingStopEvent(threading.Event):
    """Stop event that sets itself after ``max_waits`` backoff waits, without sleeping."""

    def __init__(self, max_waits):
        super().__init__()
        self.max_waits = max_waits
        self.waits = []

    def wait(self, timeout=None):
        self.waits.append(timeout)
        if len(self.waits) >= self.max_waits:
            self.set()
        return self.is_set()


def make_image_bytes(width=64, height=32, fmt="PNG", color=(200, 100, 50)):
    """Encode a solid-colour image of the given size and format."""
    mode = "RGBA" if len(color) == 4 else "RGB"
    image = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    if fmt == "GIF":
        image = image.convert("P")
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the host environment and .env files."""
    return load_settings(
        overrides={
            "storage": {"bucket": TEST_BUCKET, "region": TEST_REGION},
            "database": {"path": str(tmp_path / "jobs.db")},
            "worker": {"idle_interval": 0.0, "error_interval": 0.0, "run_in_api": False},
        },
        environ={},
        use_dotenv=False,
    )


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def services(settings, s3_client, redis_client):
    return Services(
        blobs=BlobStore.from_settings(settings, client=s3_client),
        queue=TaskQueue.from_settings(settings, client=redis_client),
        jobs=JobDatabase(settings.database.path),
    )


@pytest.fixture
def manager(settings, services):
    return JobManager.from_settings(settings, services)


@pytest.fixture
def worker(settings, services):
    return Worker.from_settings(settings, services)


@pytest.fixture
def status_log(services, monkeypatch):
    """Record every status written to the job database, in order."""
    calls = []
    original = services.jobs.update_status

    def recording_update(job_id, status, *args, **kwargs):
        calls.append(JobStatus(status))
        return original(job_id, status, *args, **kwargs)

    monkeypatch.setattr(services.jobs, "update_status", recording_update)
    return calls


@pytest.fixture
def client(settings, services):
    """Test client whose app uses the in-memory backends and no worker thread."""
    app = create_app(settings=settings, services=services, run_worker=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def sample_png():
    return make_image_bytes(1000, 500, "PNG")


@pytest.fixture
def image_bytes():
    """Factory fixture: ``image_bytes(width, height, fmt, color)``."""
    return make_image_bytes


@pytest.fixture
def stop_after():
    """Factory fixture: ``stop_after(n)`` is a stop event that sets itself after n waits."""
    return CountingStopEvent
