"""
Process-level wiring of the backend's service handles.

The blob store, task queue and job database are constructed once by the entry
point (API or standalone worker) and passed explicitly to the job manager and
the worker. Configuration errors surface here, at startup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from omegaconf import DictConfig

from .blob_store import BlobStore
from .database import JobDatabase
from .task_queue import TaskQueue


@dataclass
class Services:
    blobs: BlobStore
    queue: TaskQueue
    jobs: JobDatabase


def build_services(settings: DictConfig) -> Services:
    """
    Construct real backends from settings.

    Raises:
        ConfigurationError: If the bucket or queue URL is missing
    """
    return Services(
        blobs=BlobStore.from_settings(settings),
        queue=TaskQueue.from_settings(settings),
        jobs=JobDatabase(Path(settings.database.path)),
    )


def configure_logging(settings: DictConfig) -> None:
    level = str(settings.logging.level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
