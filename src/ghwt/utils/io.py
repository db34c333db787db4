"""Small IO helpers for safe note and config persistence.

Provides atomic_write_text() which writes to a temp file in the same
filesystem and atomically replaces the destination.

Also provides exclusive_lock(), an advisory per-path lock used to serialize
read-merge-write cycles on a single note.
"""
from __future__ import annotations

import logging
import os
import sys
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

LOCK_SUFFIX = ".lock"


def lock_path_for(path: str | Path) -> Path:
    """Return the sidecar lock file used for ``path``."""
    target = Path(path)
    return target.with_name(f".{target.name}{LOCK_SUFFIX}")


@contextmanager
def exclusive_lock(path: str | Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on the sidecar lock file of ``path``.

    On Unix, uses fcntl.flock with LOCK_EX (blocking).
    On Windows, uses msvcrt.locking on the first byte (blocking retry).

    Usage:
        with exclusive_lock(note_path):
            note = read_note(note_path)
            write_note(note_path, ...)
    """
    lock_file = lock_path_for(path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_file, "a+") as handle:
        if sys.platform == "win32":
            import msvcrt

            msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
            try:
                yield
            finally:
                handle.seek(0)
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)


def atomic_write_text(path: str | Path, data: str, perms: int = 0o644) -> None:
    """Atomically write text content to path.

    Steps:
    - Ensure parent directory exists
    - Write to a NamedTemporaryFile in the same directory
    - fsync the temp file
    - os.replace() to move into place atomically
    - chmod the target path to perms

    If os.replace() fails, the temp file is cleaned up before re-raising.
    """
    dest = Path(path)
    dest.parent.mkdir(parents=True, exist_ok=True)

    tmp_name: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            dir=str(dest.parent),
            prefix=f".{dest.name}.",
            delete=False,
            encoding="utf-8",
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())

        os.replace(tmp_name, dest)
        tmp_name = None

        try:
            os.chmod(dest, perms)
        except PermissionError:
            logger.warning(f"Could not set permissions {oct(perms)} on {dest}.")
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
