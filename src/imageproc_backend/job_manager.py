"""
Producer-side job lifecycle for the image processing backend.

This module covers everything that happens before and around the worker:
- Accepting an upload and storing the original bytes
- Registering the job record in ``pending`` state
- Enqueuing the job descriptor for the worker
- Answering status queries, owner listings and deletions

The upload call returns as soon as the job is queued; no pixel work happens on
the request path.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from uuid import uuid4

from omegaconf import DictConfig

from .descriptors import make_descriptor
from .errors import ImageDecodeError, InvalidImageError, QueueTransportError
from .models import JobRecord, JobStatus, JobStatusView, TransformOptions, UploadResult
from .processor import probe_image
from .services import Services
from .utils import build_result_key, build_source_key, utcnow

logger = logging.getLogger(__name__)


class JobManager:
    """
    Central coordinator for image jobs on the producer side.

    Attributes:
        original_prefix: Key prefix for uploaded originals
        processed_prefix: Key prefix for processed results
    """

    def __init__(
        self,
        services: Services,
        original_prefix: str = "originals",
        processed_prefix: str = "processed",
    ) -> None:
        self.blobs = services.blobs
        self.queue = services.queue
        self.jobs = services.jobs
        self.original_prefix = original_prefix
        self.processed_prefix = processed_prefix

    @classmethod
    def from_settings(cls, settings: DictConfig, services: Services) -> "JobManager":
        return cls(
            services,
            original_prefix=str(settings.storage.original_prefix),
            processed_prefix=str(settings.storage.processed_prefix),
        )

    def submit_upload(
        self,
        data: bytes,
        filename: str,
        options: TransformOptions,
        owner_id: str,
    ) -> UploadResult:
        """
        Store an upload, register its job and queue it for processing.

        This method:
        1. Validates the payload is a decodable image and reads its dimensions
        2. Uploads the original under a fresh ``originals/`` key
        3. Creates the job record with status ``pending``
        4. Pushes the job descriptor onto the task queue

        Args:
            data: Raw uploaded bytes
            filename: Client-side filename, used for the key extension
            options: Transform stages to apply
            owner_id: Identity of the uploading user

        Returns:
            UploadResult acknowledging the pending job

        Raises:
            InvalidImageError: If the payload is not a supported image
            BlobStoreError: If the original cannot be stored
            QueueTransportError: If the job cannot be queued (the record is
                marked failed before the error propagates)
        """
        try:
            info = probe_image(data)
        except ImageDecodeError as exc:
            raise InvalidImageError(str(exc)) from exc

        source_key = build_source_key(filename, self.original_prefix, fallback_ext=info.extension)
        source_url = self.blobs.put(source_key, data, content_type=info.content_type)

        now = utcnow()
        record = JobRecord(
            id=uuid4().hex,
            owner_id=owner_id,
            filename=filename,
            source_key=source_key,
            source_url=source_url,
            size=len(data),
            content_type=info.content_type,
            width=info.width,
            height=info.height,
            status=JobStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        job_id = self.jobs.create(record)

        try:
            self.queue.enqueue(make_descriptor(source_key, options, job_id, owner_id))
        except QueueTransportError as exc:
            logger.error("Could not queue job %s: %s", job_id, exc)
            self.jobs.update_status(job_id, JobStatus.FAILED, error=f"Failed to queue processing task: {exc}")
            raise

        logger.info("Accepted upload %s as job %s (%dx%d)", filename, job_id, info.width, info.height)
        return UploadResult(
            job_id=job_id,
            source_url=source_url,
            width=info.width,
            height=info.height,
            status=JobStatus.PENDING,
        )

    def get_status(self, job_id: str) -> JobStatusView:
        """
        Raises:
            JobNotFoundError: If the job does not exist
        """
        return self.jobs.get_status(job_id)

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self.jobs.get_job(job_id)

    def list_jobs(self, owner_id: str) -> List[JobRecord]:
        return self.jobs.list_jobs(owner_id)

    def delete_job(self, job_id: str, owner_id: str) -> bool:
        """
        Delete a job and its stored images.

        Blobs go first so that a storage failure leaves the record (and the
        owner's ability to retry the delete) intact.

        Returns:
            True if deleted, False if missing or owned by someone else
        """
        record = self.jobs.get_job(job_id)
        if record is None or record.owner_id != owner_id:
            return False

        keys = [record.source_key]
        if record.status is JobStatus.COMPLETED:
            keys.append(build_result_key(record.source_key, self.processed_prefix))
        # S3 deletes are idempotent; a missing key is not an error
        for key in keys:
            self.blobs.delete(key)

        return self.jobs.delete_job(job_id, owner_id)
