"""
Background worker that drains the task queue.

Each iteration polls the queue once:
- empty queue: log once per idle streak, then back off (default 2s)
- transport error: log and back off longer (default 5s); never fatal
- message: decode, mark the job processing, run the pipeline, store the
  result and mark it completed, or failed on any stage error

Cancellation is cooperative. The stop event is checked at the top of every
iteration, and a job that has started always runs to a terminal status.
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional

from omegaconf import DictConfig

from .configuration import load_settings
from .descriptors import decode_descriptor
from .errors import (
    BlobStoreError,
    ImageProcError,
    JobNotFoundError,
    MalformedDescriptorError,
    QueueEmpty,
    QueueTransportError,
)
from .models import JobDescriptor, JobStatus
from .processor import PipelineConfig, run_pipeline
from .services import Services, build_services, configure_logging
from .utils import build_result_key

logger = logging.getLogger(__name__)


class Worker:
    """
    Single consumer of the task queue.

    Attributes:
        idle_interval: Seconds to wait after finding the queue empty
        error_interval: Seconds to wait after a queue transport error
    """

    def __init__(
        self,
        services: Services,
        pipeline_config: Optional[PipelineConfig] = None,
        idle_interval: float = 2.0,
        error_interval: float = 5.0,
        processed_prefix: str = "processed",
    ) -> None:
        self.queue = services.queue
        self.blobs = services.blobs
        self.jobs = services.jobs
        self.pipeline_config = pipeline_config or PipelineConfig()
        self.idle_interval = idle_interval
        self.error_interval = error_interval
        self.processed_prefix = processed_prefix

    @classmethod
    def from_settings(cls, settings: DictConfig, services: Services) -> "Worker":
        return cls(
            services,
            pipeline_config=PipelineConfig.from_settings(settings),
            idle_interval=float(settings.worker.idle_interval),
            error_interval=float(settings.worker.error_interval),
            processed_prefix=str(settings.storage.processed_prefix),
        )

    def run(self, stop_event: threading.Event) -> None:
        """Poll until ``stop_event`` is set."""
        logger.info("Worker started on queue %s", self.queue.name)
        idle_logged = False
        while not stop_event.is_set():
            try:
                message = self.queue.dequeue()
            except QueueEmpty:
                if not idle_logged:
                    logger.info("Queue is empty. Waiting for tasks...")
                    idle_logged = True
                stop_event.wait(self.idle_interval)
                continue
            except QueueTransportError as exc:
                logger.error("Error dequeuing task: %s", exc)
                stop_event.wait(self.error_interval)
                continue

            idle_logged = False
            self.handle_message(message)
        logger.info("Worker stopped")

    def handle_message(self, message: str) -> Optional[JobStatus]:
        """
        Execute one raw queue message.

        A malformed message that still names its job marks that job failed;
        one that does not is dropped.

        Returns:
            The terminal status written, or None if the message was dropped
        """
        try:
            descriptor = decode_descriptor(message)
        except MalformedDescriptorError as exc:
            if exc.job_id is None:
                logger.warning("Dropping malformed task %r: %s", message[:200], exc)
                return None
            logger.error("Malformed task for job %s: %s", exc.job_id, exc)
            if not self._accepts(exc.job_id):
                return None
            return self._mark_failed(exc.job_id, str(exc))
        return self.process(descriptor)

    def process(self, descriptor: JobDescriptor) -> Optional[JobStatus]:
        """
        Run one job to a terminal status.

        Records that are missing or already terminal are left untouched, so a
        redelivered message never writes a second terminal status.
        """
        job_id = descriptor.job_id
        if not self._accepts(job_id):
            return None

        logger.info("Processing job %s (%s)", job_id, descriptor.source_key)
        stored_key = None
        try:
            self.jobs.update_status(job_id, JobStatus.PROCESSING)

            source = self.blobs.get(descriptor.source_key)
            result = run_pipeline(source, descriptor.options, self.pipeline_config)
            result_key = build_result_key(descriptor.source_key, self.processed_prefix)
            result_url = self.blobs.put(result_key, result.data, content_type=result.content_type)
            stored_key = result_key

            self.jobs.update_status(
                job_id,
                JobStatus.COMPLETED,
                result_url=result_url,
                size=len(result.data),
                content_type=result.content_type,
                width=result.width,
                height=result.height,
            )
        except JobNotFoundError:
            logger.warning("Job %s was deleted while processing; dropping task", job_id)
            if stored_key is not None:
                self._discard_result(stored_key)
            return None
        except Exception as exc:
            if isinstance(exc, ImageProcError):
                logger.error("Job %s failed: %s", job_id, exc)
            else:
                logger.exception("Job %s failed unexpectedly", job_id)
            return self._mark_failed(job_id, str(exc))

        logger.info("Processed job %s -> %s (%dx%d)", job_id, result_url, result.width, result.height)
        return JobStatus.COMPLETED

    def _accepts(self, job_id: str) -> bool:
        """True if the job has a record that has not reached a terminal status."""
        try:
            current = self.jobs.get_status(job_id).status
        except JobNotFoundError:
            logger.warning("Job %s has no record (deleted?); dropping task", job_id)
            return False
        if current.is_terminal:
            logger.warning("Job %s is already %s; dropping duplicate task", job_id, current.value)
            return False
        return True

    def _discard_result(self, key: str) -> None:
        try:
            self.blobs.delete(key)
        except BlobStoreError as exc:
            logger.error("Could not remove orphaned result %s: %s", key, exc)

    def _mark_failed(self, job_id: str, error: str) -> Optional[JobStatus]:
        try:
            self.jobs.update_status(job_id, JobStatus.FAILED, result_url=None, error=error)
        except JobNotFoundError:
            logger.warning("Job %s was deleted before it could be marked failed", job_id)
            return None
        except Exception:
            logger.exception("Could not mark job %s as failed", job_id)
            return None
        return JobStatus.FAILED


class WorkerThread:
    """Runs a ``Worker`` on a daemon thread with a stop event owned by the caller."""

    def __init__(self, worker: Worker) -> None:
        self.worker = worker
        self.stop_event = threading.Event()
        self._thread = threading.Thread(target=worker.run, args=(self.stop_event,), name="image-worker", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self.stop_event.set()
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the image processing worker")
    parser.add_argument("--queue", help="Override the Redis list name")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    overrides: dict = {}
    if args.queue:
        overrides["queue"] = {"name": args.queue}
    if args.log_level:
        overrides["logging"] = {"level": args.log_level}

    settings = load_settings(overrides)
    configure_logging(settings)
    services = build_services(settings)
    worker = Worker.from_settings(settings, services)

    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        logger.info("Received signal %s, finishing current job before exit", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)
    worker.run(stop_event)


if __name__ == "__main__":
    main()
