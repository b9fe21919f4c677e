from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Command(str, Enum):
    PROCESS = "process"


class ResizeOptions(BaseModel):
    # Non-positive widths fall back to the configured default when applied.
    width: int = 0


class CropOptions(BaseModel):
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0


class TransformOptions(BaseModel):
    """Optional transform stages; a missing field skips that stage."""

    resize: Optional[ResizeOptions] = None
    crop: Optional[CropOptions] = None
    tint: Optional[str] = None


class JobDescriptor(BaseModel):
    command: Command = Command.PROCESS
    source_key: str
    options: TransformOptions = Field(default_factory=TransformOptions)
    job_id: str
    owner_id: str = ""


class JobRecord(BaseModel):
    id: str
    owner_id: str
    filename: str
    source_key: str
    source_url: str
    size: int
    content_type: str
    width: int
    height: int
    status: JobStatus = JobStatus.PENDING
    result_url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class JobStatusView(BaseModel):
    status: JobStatus
    result_url: Optional[str] = None


class UploadResult(BaseModel):
    job_id: str
    source_url: str
    width: int
    height: int
    status: JobStatus = JobStatus.PENDING
