"""
Exception hierarchy shared by the queue, storage, pipeline and worker layers.

Errors fall into three groups:
- Transport errors: a backend (Redis, S3) could not be reached or refused the call.
  The worker logs them and keeps going.
- Malformed input: an undecodable image, descriptor or colour string. The job is
  marked failed (or dropped when no job id can be recovered).
- Configuration errors: raised at startup, never per call.
"""

from __future__ import annotations

from typing import Optional


class ImageProcError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(ImageProcError):
    """Required configuration (bucket, region, queue URL) is missing or invalid."""


class TransportError(ImageProcError):
    """A backend service failed to answer a request."""


class QueueTransportError(TransportError):
    pass


class QueueEmpty(ImageProcError):
    """
    Raised by ``TaskQueue.dequeue`` when there is nothing to pop.

    Not a ``TransportError``: an empty queue is the worker's idle state.
    """


class BlobStoreError(TransportError):
    pass


class BlobNotFoundError(BlobStoreError):
    """The requested key does not exist in the bucket."""


class MalformedDescriptorError(ImageProcError):
    """
    A queue message could not be decoded into a job descriptor.

    ``job_id`` is set when the message still names its job, so the worker can
    mark that job failed instead of dropping the message.
    """

    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.job_id = job_id


class PipelineError(ImageProcError):
    """A fatal transform stage failure."""


class ImageDecodeError(PipelineError):
    pass


class ImageEncodeError(PipelineError):
    pass


class InvalidColorError(ImageProcError):
    """A tint colour is not a ``#RRGGBB`` string."""


class InvalidImageError(ImageProcError):
    """An uploaded payload is not a supported image."""


class JobNotFoundError(ImageProcError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id
