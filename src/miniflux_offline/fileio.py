"""Atomic file helpers shared by the config, queue and entry stores."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write payload to path via temp file + os.replace().

    A crash mid-write leaves either the previous file or the new one, never a
    truncated mix. Raises OSError; callers decide how to report it.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp", prefix=f".{path.stem}-")
    closed = False
    try:
        os.write(fd, payload)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_text_atomic(path: Path, text: str) -> None:
    write_bytes_atomic(path, text.encode("utf-8"))


def write_json_atomic(path: Path, data: Any) -> bool:
    """Serialize data as JSON and write it atomically. Returns True on success."""
    try:
        write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False))
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error("Failed to write %s: %s", path, e)
        return False


def read_json_object(path: Path) -> dict[str, Any] | None:
    """Read a JSON object from path.

    Returns None when the file is missing, unreadable, malformed, or holds a
    non-object payload.
    """
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning("Ignoring %s with invalid JSON: %s", path, e)
        return None
    except OSError as e:
        logger.warning("Could not read %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s with non-object JSON payload", path)
        return None
    return data


__all__ = [
    "read_json_object",
    "write_bytes_atomic",
    "write_json_atomic",
    "write_text_atomic",
]
