"""Content-addressed storage for baseline file content.

Every saved baseline is kept as an immutable blob so that a dirty or
deleted file can be restored and diffed against what was last saved.

Layout: <root>/sha256/ab/cd/<full_hex>
"""

from pathlib import Path
from typing import Iterable, Iterator, Set
import logging
import os
import re
import time

from .constants import FINGERPRINT_PREFIX
from .errors import ShelfIOError
from .hashing import fingerprint
from .utils import atomic_write_bytes

logger = logging.getLogger(__name__)

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def _validate_fingerprint(fp: str) -> str:
    """Validate and extract the hex part of a fingerprint.

    Raises:
        ValueError: If the fingerprint format is invalid

    Security:
        Prevents path traversal by validating hex format before using in paths.
    """
    if not fp.startswith(FINGERPRINT_PREFIX):
        raise ValueError(f"Invalid fingerprint scheme: {fp!r}")

    hex_part = fp[len(FINGERPRINT_PREFIX):]
    if not _HEX64.fullmatch(hex_part):
        raise ValueError(f"Invalid sha256 hex (must be 64 hex chars): {hex_part!r}")

    return hex_part


class ObjectStore:
    """Immutable blob store keyed by content fingerprint."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.objdir = self.root / "sha256"
        self.objdir.mkdir(parents=True, exist_ok=True)

    def path_for(self, fp: str) -> Path:
        """Get storage path for a fingerprint."""
        hex_part = _validate_fingerprint(fp)
        return self.objdir / hex_part[:2] / hex_part[2:4] / hex_part

    def has(self, fp: str) -> bool:
        try:
            return self.path_for(fp).exists()
        except ValueError:
            return False

    def put(self, data: bytes) -> str:
        """Store content and return its fingerprint.

        Idempotent: existing objects are never rewritten, only touched.
        """
        fp = fingerprint(data)
        dest = self.path_for(fp)
        if dest.exists():
            # Fresh mtime keeps a reused blob out of prune's reach
            try:
                os.utime(dest)
            except OSError as e:
                logger.debug("Could not touch %s: %s", dest, e)
            return fp

        try:
            atomic_write_bytes(dest, data, mode=0o444)
        except OSError as e:
            raise ShelfIOError(str(dest), e.strerror or str(e), operation="store") from e
        logger.debug("Stored object %s", fp)
        return fp

    def get(self, fp: str) -> bytes:
        """Read content for a fingerprint.

        Raises:
            ShelfIOError: Object missing or unreadable
        """
        path = self.path_for(fp)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ShelfIOError(str(path), f"baseline object {fp} is missing", operation="restore")
        except OSError as e:
            raise ShelfIOError(str(path), e.strerror or str(e), operation="restore") from e

    def fingerprints(self) -> Iterator[str]:
        """Iterate over fingerprints of all stored objects."""
        for path in self.objdir.glob("*/*/*"):
            if path.is_file() and _HEX64.fullmatch(path.name):
                yield f"{FINGERPRINT_PREFIX}{path.name}"

    def prune(self, keep: Iterable[str], grace: float = 0.0) -> int:
        """Remove objects not referenced by any tracked entry.

        Args:
            keep: Fingerprints still referenced
            grace: Spare objects written or reused within this many seconds

        Returns:
            Number of objects removed
        """
        keep_set: Set[str] = set(keep)
        cutoff = time.time() - grace
        removed = 0
        for fp in list(self.fingerprints()):
            if fp in keep_set:
                continue
            path = self.path_for(fp)
            try:
                if grace > 0 and path.stat().st_mtime > cutoff:
                    continue
                path.chmod(0o644)
                path.unlink()
                removed += 1
                logger.debug("Removed unreferenced object: %s", fp)
            except OSError as e:
                logger.debug("Could not remove %s: %s", path, e)
        return removed
