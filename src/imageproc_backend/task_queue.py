"""
Redis list-backed task queue.

Producers ``LPUSH`` encoded descriptors and the worker ``RPOP``s them, giving
best-effort FIFO ordering. Consumers must tolerate seeing the same job twice:
the worker drops a message whose job already reached a terminal status.
"""

from __future__ import annotations

import logging
from typing import Any

import redis
from omegaconf import DictConfig

from .descriptors import encode_descriptor
from .errors import ConfigurationError, QueueEmpty, QueueTransportError
from .models import JobDescriptor

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_NAME = "image_tasks"


class TaskQueue:
    def __init__(self, client: Any, name: str = DEFAULT_QUEUE_NAME) -> None:
        self._client = client
        self.name = name

    @classmethod
    def from_settings(cls, settings: DictConfig, client: Any = None) -> "TaskQueue":
        queue = settings.queue
        if client is None:
            if not queue.redis_url:
                raise ConfigurationError("REDIS_URL is not configured")
            client = redis.Redis.from_url(queue.redis_url, decode_responses=True)
        return cls(client, queue.name or DEFAULT_QUEUE_NAME)

    def enqueue(self, descriptor: JobDescriptor) -> None:
        """
        Push a descriptor onto the queue.

        Raises:
            QueueTransportError: If Redis is unreachable or rejects the push
        """
        message = encode_descriptor(descriptor)
        try:
            self._client.lpush(self.name, message)
        except redis.exceptions.RedisError as exc:
            raise QueueTransportError(f"Failed to enqueue job {descriptor.job_id}: {exc}") from exc
        logger.info("Enqueued job %s (%s)", descriptor.job_id, descriptor.source_key)

    def dequeue(self) -> str:
        """
        Pop the oldest raw message.

        Decoding is left to the caller so that a malformed message is dropped by
        the worker rather than mistaken for a transport failure here.

        Raises:
            QueueEmpty: If there is nothing to pop
            QueueTransportError: If Redis is unreachable
        """
        try:
            message = self._client.rpop(self.name)
        except redis.exceptions.RedisError as exc:
            raise QueueTransportError(f"Failed to dequeue from {self.name}: {exc}") from exc
        if message is None:
            raise QueueEmpty(self.name)
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        return message

    def size(self) -> int:
        try:
            return int(self._client.llen(self.name))
        except redis.exceptions.RedisError as exc:
            raise QueueTransportError(f"Failed to read length of {self.name}: {exc}") from exc

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.exceptions.RedisError:
            logger.warning("Redis ping failed for queue %s", self.name)
            return False
