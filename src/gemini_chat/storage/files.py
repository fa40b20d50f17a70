"""Atomic file writes and the cross-process workspace lock."""

from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from filelock import FileLock, Timeout

from gemini_chat.errors import LockTimeoutError, ParseError, StorageError
from gemini_chat.log import get_logger

logger = get_logger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write *text* to a temp file in the target directory, then rename it over *path*.

    A crash before the rename leaves the previous file untouched.
    """
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException as e:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        if isinstance(e, OSError):
            raise StorageError(f"Failed to write {path}: {e}") from e
        raise


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, json.dumps(data, ensure_ascii=False, indent=2) + "\n")


def read_json(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise StorageError(f"Failed to read {path}: {e}") from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON in {path}: {e}") from e


@contextmanager
def workspace_lock(lock_path: Path, timeout: float) -> Iterator[None]:
    """Hold an OS advisory lock for one read-modify-write cycle."""
    lock = FileLock(str(lock_path), timeout=timeout)
    try:
        lock.acquire()
    except Timeout as e:
        logger.error("workspace_lock_timeout", path=str(lock_path), timeout=timeout)
        raise LockTimeoutError(
            f"Timed out after {timeout}s waiting for workspace lock {lock_path}"
        ) from e
    try:
        yield
    finally:
        lock.release()
