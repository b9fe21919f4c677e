"""
Utility functions for object keys, filesystem paths and timestamps.

This module provides helper functions for:
- Building collision-resistant storage keys for uploads
- Deriving the deterministic result key of a processed image
- Ensuring directory creation
"""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Optional

# Extensions are kept only when they look like real ones: a dot and 1-5 alphanumerics
EXTENSION_PATTERN = re.compile(r"^\.[a-zA-Z0-9]{1,5}$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def safe_extension(filename: str, fallback: str = "") -> str:
    """
    Return the lowercase extension of ``filename``, or ``fallback`` if it has none.

    Example:
        >>> safe_extension("Holiday.JPG")
        '.jpg'
        >>> safe_extension("weird.name/../x", ".png")
        '.png'
    """
    suffix = PurePosixPath(filename).suffix
    if not EXTENSION_PATTERN.match(suffix):
        return fallback
    return suffix.lower()


def build_source_key(filename: str, prefix: str = "originals", now_ns: Optional[int] = None, fallback_ext: str = "") -> str:
    """
    Build the storage key for an uploaded original.

    The key combines a logical prefix, a nanosecond timestamp and the original
    file extension, e.g. ``originals/img_1700000000123456789.png``.
    """
    stamp = time.time_ns() if now_ns is None else now_ns
    return f"{prefix.strip('/')}/img_{stamp}{safe_extension(filename, fallback_ext)}"


def build_result_key(source_key: str, prefix: str = "processed") -> str:
    """
    Derive the key of the processed image from its source key.

    Deterministic, so a redelivered job overwrites its own earlier result.

    Example:
        >>> build_result_key("originals/img_1.png")
        'processed/originals/img_1.jpg'
    """
    return f"{prefix.strip('/')}/{PurePosixPath(source_key).with_suffix('.jpg')}"


def ensure_directory(path: Path) -> Path:
    """
    Create a directory if it doesn't exist, including parent directories.

    Args:
        path: The directory path to create

    Returns:
        The same path object for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path
