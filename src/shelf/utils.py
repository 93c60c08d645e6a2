"""Utility functions for shelf."""

from pathlib import Path
from typing import Optional
import logging
import os
import tempfile
import time

logger = logging.getLogger(__name__)

_DIR_OPEN_FLAGS = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)


def fsync_dir(path: Path) -> None:
    """Flush directory metadata so a rename inside it survives a crash.

    Not every platform can open a directory for fsync; failures are logged
    at debug level and otherwise ignored.
    """
    try:
        fd = os.open(str(path), _DIR_OPEN_FLAGS)
    except OSError:
        logger.debug("Cannot open %s for fsync", path)
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("fsync unsupported on directory %s", path)
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Replace path with data so readers see either old or new content.

    The data goes to a sibling temp file which is synced, chmodded if
    requested, then renamed over the target. The parent directory is
    synced last.

    Args:
        path: File to create or replace
        data: New content
        mode: Permission bits for the new file
    """
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    fsync_dir(parent)


def atomic_write_text(path: Path, text: str) -> None:
    """Atomically write UTF-8 text to a file."""
    atomic_write_bytes(path, text.encode("utf-8"))


def is_relative_to(path: str, prefix: str) -> bool:
    """Check if POSIX path equals prefix or lies below it.

    Component aware: "/a/bc" is not under "/a/b".
    """
    prefix = prefix.rstrip("/") or "/"
    if path == prefix:
        return True
    if prefix == "/":
        return path.startswith("/")
    return path.startswith(prefix + "/")


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def get_timestamp() -> float:
    """Get current timestamp as Unix epoch."""
    return time.time()


# (seconds, unit) from largest to smallest
_AGE_UNITS = [
    (31536000, "year"),
    (2592000, "month"),
    (604800, "week"),
    (86400, "day"),
    (3600, "hour"),
    (60, "minute"),
]


def humanize_timestamp(ts: float, now: float = None) -> str:
    """Convert a Unix timestamp to human-readable relative time.

    Examples:
        now - 30    -> "just now"
        now - 7200  -> "2 hours ago"
    """
    if now is None:
        now = time.time()
    seconds = max(0.0, now - ts)

    for size, unit in _AGE_UNITS:
        if seconds >= size:
            count = int(seconds // size)
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return "just now"
