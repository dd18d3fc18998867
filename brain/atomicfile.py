#!/usr/bin/env python3
"""Crash-safe JSON documents: locked read-modify-write with temp-file + rename."""

import copy
import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path

from .logging_config import get_logger

log = get_logger("brain.atomicfile")


def lock_path_for(path: Path) -> Path:
    """Sidecar lock file for a document (memories.json -> memories.json.lock)."""
    path = Path(path)
    return path.with_name(f"{path.name}.lock")


@contextmanager
def locked_file(path: Path):
    """Acquire an exclusive lock for read-modify-write of path.

    The lock is held on a sidecar .lock file rather than the document,
    because every write renames a new inode over the document.
    """
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, 'a') as f:
        fcntl.flock(f, fcntl.LOCK_EX)
        try:
            yield f
        finally:
            fcntl.flock(f, fcntl.LOCK_UN)


def _replace(path: Path, data) -> None:
    """Write data to a temp file beside path, fsync, then rename over it."""
    fd, temp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.stem}.",
        suffix=".tmp"
    )
    try:
        with os.fdopen(fd, 'w') as tf:
            json.dump(data, tf, indent=2)
            tf.flush()
            os.fsync(tf.fileno())  # Ensure data is on disk before rename

        # Atomic rename (POSIX guarantees atomicity on same filesystem)
        os.rename(temp_path, path)
        temp_path = None
    finally:
        if temp_path and os.path.exists(temp_path):
            try:
                os.unlink(temp_path)
            except OSError:
                pass


def read_json(path: Path, default):
    """Read a JSON document fresh from disk.

    A missing file yields a copy of default. A corrupt file is logged and
    also yields the default, so callers never see a half-written document.
    """
    path = Path(path)
    if not path.exists():
        return copy.deepcopy(default)
    try:
        return json.loads(path.read_text())
    except (ValueError, OSError) as e:
        log.warning(f"Unreadable JSON document {path}: {e}")
        return copy.deepcopy(default)


def atomic_json_update(path: Path, update_fn, default=None):
    """Atomically read, modify, and write a JSON document with crash safety.

    1. Take the exclusive lock on the document's sidecar .lock file
    2. Read the document fresh (missing or corrupt -> default)
    3. Apply update function
    4. Write to temp file in same directory, fsync
    5. Atomic rename over the original

    A crash at any point leaves either the old or new file intact.

    Args:
        path: JSON file path
        update_fn: Function that receives the data, modifies it in place, returns result
        default: Document to start from when the file is missing (default: {})

    Returns:
        Whatever update_fn returns
    """
    path = Path(path)
    default = {} if default is None else default
    path.parent.mkdir(parents=True, exist_ok=True)

    with locked_file(path):
        if path.exists():
            try:
                data = json.loads(path.read_text())
            except ValueError as e:
                log.warning(f"Corrupt JSON document {path}, resetting: {e}")
                data = copy.deepcopy(default)
        else:
            data = copy.deepcopy(default)
        result = update_fn(data)
        _replace(path, data)

    return result


def atomic_write(path: Path, data) -> None:
    """Write JSON file atomically (for new files or complete overwrites).

    Takes the document's lock so it never interleaves with an update.

    Args:
        path: JSON file path
        data: JSON-compatible data to write
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with locked_file(path):
        _replace(path, data)
