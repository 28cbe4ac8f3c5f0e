"""
Atomic file I/O with cross-process locking.

Every writer under the archive root goes through these helpers so a reader
never observes a half-written file. Writes go to a dot-prefixed temp sibling,
are fsynced, then renamed over the target. Readers never lock.

Usage:
    from storage.file_io import atomic_write_text, atomic_json_write, read_json, file_lock

    # Replace a markdown file atomically:
    atomic_write_text(path, "# Title\\n")

    # Write JSON atomically:
    atomic_json_write(path, {"key": "value"})

    # Serialize a critical section across processes:
    with file_lock(jobs_dir / ".registry.lock"):
        ...
"""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger("daily.storage.file_io")

TMP_PREFIX = "."
TMP_SUFFIX = ".tmp"


def atomic_write_text(path: Path, text: str, *, mode: int = 0o644) -> None:
    """
    Write text to a file atomically.

    The temp file lives in the target's directory (rename must not cross
    filesystems) and has a unique name, so concurrent writers of the same
    target never share a temp file. On any OS-level failure the original
    file is left intact and the temp file is removed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f"{TMP_PREFIX}{path.name}.", suffix=TMP_SUFFIX, dir=str(path.parent)
    )
    try:
        try:
            os.write(fd, text.encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, str(path))
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_json_write(path: Path, data: Any, *, mode: int = 0o644) -> None:
    """Write JSON data to a file atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False), mode=mode)


def read_json(path: Path, *, default: Any = None) -> Any:
    """
    Read a JSON file without locking.

    Returns `default` if the file doesn't exist or can't be parsed.
    Renames are atomic, so a parse failure means a corrupt file rather
    than a torn write.
    """
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return default
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Corrupt JSON in {path}: {e}")
        return default


def is_temp_file(path: Path) -> bool:
    """True for in-flight temp files written by atomic_write_text."""
    name = Path(path).name
    return name.startswith(TMP_PREFIX) and name.endswith(TMP_SUFFIX)


@contextmanager
def file_lock(lock_path: Path) -> Iterator[None]:
    """
    Hold an exclusive fcntl.flock() on lock_path for the duration of the block.

    The lock is released when the file descriptor closes, including when the
    holding process dies.
    """
    lock_path = Path(lock_path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a") as lock_fd:
        fcntl.flock(lock_fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_fd, fcntl.LOCK_UN)
