"""Filesystem storage utilities."""

from __future__ import annotations

import re
from pathlib import Path

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def ensure_dir(path: Path) -> Path:
    """Create directory if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(filename: str, default: str = "upload") -> str:
    """Reduce an uploaded filename to a storage-key-safe basename."""
    name = Path(filename or "").name
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", name).strip("._")
    return cleaned or default


def evaluation_object_key(evaluation_id: str, kind: str, filename: str) -> str:
    return f"evaluations/{evaluation_id}/{kind}-{safe_filename(filename)}"
