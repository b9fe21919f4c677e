"""
Serialization of job descriptors carried through the task queue.

Messages are written as a versioned JSON object::

    {"v": 1, "command": "process", "source_key": "...", "options": {...},
     "job_id": "...", "owner_id": "..."}

The decoder also understands the legacy colon-delimited form
``command:sourceKey:{options+jobID}:ownerID``. There, the JSON payload is located
by the first ``{`` and the last ``}`` so that colons inside it never break the split.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .errors import MalformedDescriptorError
from .models import Command, JobDescriptor, TransformOptions

WIRE_VERSION = 1


def encode_descriptor(descriptor: JobDescriptor) -> str:
    payload = {"v": WIRE_VERSION, **descriptor.model_dump(mode="json", exclude_none=True)}
    return json.dumps(payload, separators=(",", ":"), sort_keys=True)


def decode_descriptor(message: str | bytes) -> JobDescriptor:
    """
    Parse a queue message into a ``JobDescriptor``.

    Raises:
        MalformedDescriptorError: If the message matches neither wire form, or
            carries no job id (no status can be recorded without one)
    """
    if isinstance(message, bytes):
        try:
            message = message.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedDescriptorError("Message is not valid UTF-8") from exc

    text = message.strip()
    if text.startswith("{"):
        return _decode_structured(text)
    return _decode_legacy(text)


def _decode_structured(text: str) -> JobDescriptor:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedDescriptorError(f"Invalid descriptor JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise MalformedDescriptorError("Descriptor must be a JSON object")

    version = payload.pop("v", None)
    if version != WIRE_VERSION:
        raise MalformedDescriptorError(
            f"Unsupported descriptor version: {version!r}", job_id=_recoverable_job_id(payload)
        )
    return _validate(payload)


def _decode_legacy(text: str) -> JobDescriptor:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        raise MalformedDescriptorError("Descriptor has no JSON options payload")

    header = text[:start]
    if not header.endswith(":"):
        raise MalformedDescriptorError("Descriptor header must end with ':'")
    command, sep, source_key = header[:-1].partition(":")
    if not sep:
        raise MalformedDescriptorError("Descriptor header must be 'command:sourceKey:'")

    try:
        options: Dict[str, Any] = json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedDescriptorError(f"Invalid options JSON: {exc}") from exc
    if not isinstance(options, dict):
        raise MalformedDescriptorError("Options payload must be a JSON object")

    trailer = text[end + 1 :]
    owner_id = trailer[1:] if trailer.startswith(":") else trailer

    job_id = options.pop("jobID", None) or options.pop("job_id", None)
    return _validate(
        {
            "command": command.lower(),
            "source_key": source_key,
            "options": options,
            "job_id": "" if job_id is None else str(job_id),
            "owner_id": owner_id,
        }
    )


def _recoverable_job_id(payload: Dict[str, Any]) -> Optional[str]:
    job_id = payload.get("job_id")
    if isinstance(job_id, str) and job_id:
        return job_id
    return None


def _validate(payload: Dict[str, Any]) -> JobDescriptor:
    job_id = _recoverable_job_id(payload)
    try:
        descriptor = JobDescriptor.model_validate(payload)
    except ValidationError as exc:
        raise MalformedDescriptorError(f"Invalid descriptor: {exc}", job_id=job_id) from exc
    if not descriptor.job_id:
        raise MalformedDescriptorError("Descriptor carries no job id")
    if not descriptor.source_key:
        raise MalformedDescriptorError("Descriptor carries no source key", job_id=job_id)
    return descriptor


def make_descriptor(source_key: str, options: TransformOptions, job_id: str, owner_id: str) -> JobDescriptor:
    return JobDescriptor(
        command=Command.PROCESS,
        source_key=source_key,
        options=options,
        job_id=job_id,
        owner_id=owner_id,
    )
