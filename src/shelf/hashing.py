"""Content fingerprints for dirty detection.

Fingerprints are a pure function of file bytes. Size and mtime are never
consulted since they differ across machines and clocks.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Union
import hashlib
import stat

from .constants import FINGERPRINT_PREFIX
from .errors import NotAFileError, PathNotFoundError, ShelfError, ShelfIOError


def fingerprint(data: bytes) -> str:
    """Compute SHA256 fingerprint of a byte string.

    Args:
        data: Raw file content

    Returns:
        Fingerprint in format "sha256:xxxx"
    """
    return f"{FINGERPRINT_PREFIX}{hashlib.sha256(data).hexdigest()}"


def read_file(path: Union[str, Path], operation: Optional[str] = None) -> bytes:
    """Read a regular file, translating OS errors to shelf errors.

    Raises:
        PathNotFoundError: Nothing exists at path
        NotAFileError: Path is a directory or other non-regular file
        ShelfIOError: Permission denied or any other read failure
    """
    path = Path(path)
    try:
        st = path.stat()
    except (FileNotFoundError, NotADirectoryError):
        raise PathNotFoundError(str(path), operation=operation)
    except OSError as e:
        raise ShelfIOError(str(path), e.strerror or str(e), operation=operation) from e

    if not stat.S_ISREG(st.st_mode):
        raise NotAFileError(str(path), operation=operation)

    try:
        return path.read_bytes()
    except FileNotFoundError:
        # Removed between stat and read
        raise PathNotFoundError(str(path), operation=operation)
    except OSError as e:
        raise ShelfIOError(str(path), e.strerror or str(e), operation=operation) from e


def fingerprint_file(path: Union[str, Path]) -> str:
    """Fingerprint the current content of a file."""
    return fingerprint(read_file(path))


@dataclass
class FileContent:
    """Bytes and fingerprint of one file, or the error that prevented reading it."""

    path: Path
    data: Optional[bytes] = None
    fingerprint: Optional[str] = None
    error: Optional[ShelfError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def read_files_parallel(paths: Iterable[Path], max_workers: int = 4) -> Dict[Path, FileContent]:
    """Read and fingerprint many files in parallel.

    Hashing independent files has no ordering requirement, so results are
    returned as a mapping. Errors are captured per path, never raised.

    Args:
        paths: Files to read
        max_workers: Number of parallel workers

    Returns:
        Dict mapping each input path to its FileContent
    """
    def read_one(path: Path) -> FileContent:
        try:
            data = read_file(path, operation="track")
        except ShelfError as e:
            return FileContent(path=path, error=e)
        return FileContent(path=path, data=data, fingerprint=fingerprint(data))

    paths = list(paths)
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
        futures = [executor.submit(read_one, p) for p in paths]
        return {p: future.result() for p, future in zip(paths, futures)}


__all__ = [
    "fingerprint",
    "fingerprint_file",
    "read_file",
    "read_files_parallel",
    "FileContent",
]
