"""
Tests for the Redis-backed task queue, using an in-memory Redis stand-in.
"""

from unittest.mock import patch

import pytest

from imageproc_backend.descriptors import decode_descriptor, make_descriptor
from imageproc_backend.errors import ConfigurationError, QueueEmpty, QueueTransportError, TransportError
from imageproc_backend.models import TransformOptions
from imageproc_backend.task_queue import DEFAULT_QUEUE_NAME, TaskQueue


def _descriptor(job_id):
    return make_descriptor(f"originals/{job_id}.png", TransformOptions(), job_id, "owner")


@pytest.fixture
def queue(redis_client):
    return TaskQueue(redis_client)


class TestTaskQueue:
    """Tests for enqueue/dequeue semantics."""

    def test_fifo_order(self, queue):
        """Descriptors come out in the order they went in."""
        for job_id in ("a", "b", "c"):
            queue.enqueue(_descriptor(job_id))

        popped = [decode_descriptor(queue.dequeue()).job_id for _ in range(3)]
        assert popped == ["a", "b", "c"]

    def test_uses_redis_list(self, queue, redis_client):
        queue.enqueue(_descriptor("a"))
        assert len(redis_client.lists[DEFAULT_QUEUE_NAME]) == 1
        assert queue.size() == 1

    def test_empty_queue_is_not_a_transport_error(self, queue):
        """An empty queue is a normal signal, distinguishable from a broken connection."""
        with pytest.raises(QueueEmpty) as exc_info:
            queue.dequeue()
        assert not isinstance(exc_info.value, TransportError)

    def test_dequeue_transport_error(self, queue, redis_client):
        redis_client.down = True
        with pytest.raises(QueueTransportError):
            queue.dequeue()

    def test_enqueue_transport_error(self, queue, redis_client):
        redis_client.down = True
        with pytest.raises(QueueTransportError):
            queue.enqueue(_descriptor("a"))
        redis_client.down = False
        assert queue.size() == 0

    def test_ping(self, queue, redis_client):
        assert queue.ping() is True
        redis_client.down = True
        assert queue.ping() is False

    def test_size_transport_error(self, queue, redis_client):
        redis_client.down = True
        with pytest.raises(QueueTransportError):
            queue.size()

    def test_bytes_messages_are_decoded(self, queue, redis_client):
        """Clients created without decode_responses still yield text."""
        redis_client.lists[DEFAULT_QUEUE_NAME] = [b"raw-message"]
        assert queue.dequeue() == "raw-message"

    def test_separate_queue_names_are_isolated(self, redis_client):
        first = TaskQueue(redis_client, "first")
        second = TaskQueue(redis_client, "second")
        first.enqueue(_descriptor("a"))
        with pytest.raises(QueueEmpty):
            second.dequeue()


class TestFromSettings:
    """Tests for building a queue from configuration."""

    def test_uses_configured_name(self, settings, redis_client):
        settings.queue.name = "custom"
        queue = TaskQueue.from_settings(settings, client=redis_client)
        assert queue.name == "custom"

    def test_missing_url_is_configuration_error(self, settings):
        settings.queue.redis_url = ""
        with pytest.raises(ConfigurationError):
            TaskQueue.from_settings(settings)

    def test_builds_client_from_url(self, settings):
        with patch("imageproc_backend.task_queue.redis.Redis.from_url") as from_url:
            TaskQueue.from_settings(settings)
        from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
