"""Filesystem-backed remote for push and pull.

Layout under the remote root:

    refs/<ref>/manifest.json   {"files": {logical_path: fingerprint}, ...}
    refs/<ref>/.lock           held while a push rewrites the manifest
    objects/sha256/ab/cd/<hex> content-addressed blobs

Blobs are written before the manifest and the manifest is replaced
atomically, so a reader sees either the old ref or the new one. A push
only adds or updates the paths it carries; everything else already stored
under the ref stays.
"""

from pathlib import Path, PurePosixPath
from typing import Dict, Mapping
import json
import logging
import re

import portalocker

from .constants import REMOTE_MANIFEST_FILE, SHELF_VERSION
from .errors import InvalidRefError, ShelfError, TransportError
from .hashing import fingerprint
from .objects import ObjectStore
from .utils import atomic_write_text, get_timestamp

logger = logging.getLogger(__name__)

_REF_COMPONENT = re.compile(r"^[A-Za-z0-9._-]+$")

REF_LOCK_FILE = ".lock"


def validate_ref(ref: str, operation: str) -> str:
    """Reject refs that could escape the refs directory.

    Raises:
        InvalidRefError: If the ref is empty or contains unsafe components
    """
    parts = ref.split("/")
    if not ref or any(p in ("", ".", "..") or not _REF_COMPONENT.match(p) for p in parts):
        raise InvalidRefError(ref, operation=operation)
    return ref


class DirectoryRemote:
    """RemoteSync implementation over a local or mounted directory."""

    def __init__(self, root: Path, lock_timeout: float = 10.0):
        self.root = Path(root).expanduser()
        self.lock_timeout = lock_timeout

    def _ref_dir(self, ref: str, operation: str) -> Path:
        return self.root / "refs" / validate_ref(ref, operation)

    def _objects(self) -> ObjectStore:
        return ObjectStore(self.root / "objects")

    def _read_manifest(self, ref: str, path: Path, operation: str) -> Dict[str, str]:
        """Path to fingerprint mapping of a ref; empty if the ref doesn't exist."""
        if not path.exists():
            return {}
        try:
            entries = json.loads(path.read_text())["files"]
            if not isinstance(entries, dict):
                raise TypeError(f"files is a {type(entries).__name__}")
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise TransportError(f"Unreadable manifest for {ref}: {e}", ref=ref, operation=operation) from e

        for logical_path in entries:
            if not PurePosixPath(logical_path).is_absolute():
                raise TransportError(
                    f"Manifest for {ref} has relative path {logical_path!r}",
                    ref=ref,
                    operation=operation,
                )
        return entries

    def fetch(self, ref: str) -> Dict[str, bytes]:
        """Read every file stored under a ref; a missing ref is empty."""
        path = self._ref_dir(ref, "fetch") / REMOTE_MANIFEST_FILE
        entries = self._read_manifest(ref, path, "fetch")
        if not entries:
            logger.debug("Ref %s is empty or absent at %s", ref, self.root)
            return {}

        objects = self._objects()
        files: Dict[str, bytes] = {}
        for logical_path, fp in entries.items():
            try:
                data = objects.get(fp)
            except (ShelfError, ValueError) as e:
                raise TransportError(f"Missing content for {logical_path}: {e}", ref=ref, operation="fetch") from e
            if fingerprint(data) != fp:
                raise TransportError(f"Content of {logical_path} does not match {fp}", ref=ref, operation="fetch")
            files[logical_path] = data
        return files

    def push(self, ref: str, files: Mapping[str, bytes]) -> None:
        """Add or update files under a ref, keeping the paths not given.

        Concurrent pushes to one ref are serialized by a lock file next to
        the manifest, so neither loses the other's paths.
        """
        ref_dir = self._ref_dir(ref, "push")
        try:
            ref_dir.mkdir(parents=True, exist_ok=True)
            objects = self._objects()
            staged = {p: objects.put(files[p]) for p in sorted(files)}
        except (ShelfError, OSError) as e:
            raise TransportError(f"Could not upload to {ref}: {e}", ref=ref, operation="push") from e

        manifest_path = ref_dir / REMOTE_MANIFEST_FILE
        try:
            with portalocker.Lock(str(ref_dir / REF_LOCK_FILE), "a", timeout=self.lock_timeout):
                entries = self._read_manifest(ref, manifest_path, "push")
                entries.update(staged)
                manifest = {
                    "version": SHELF_VERSION,
                    "pushed_at": get_timestamp(),
                    "files": dict(sorted(entries.items())),
                }
                atomic_write_text(manifest_path, json.dumps(manifest, indent=2, sort_keys=True) + "\n")
        except portalocker.exceptions.LockException as e:
            raise TransportError(
                f"Ref {ref} is locked by another push (waited {self.lock_timeout:g}s)",
                ref=ref,
                operation="push",
            ) from e
        except OSError as e:
            raise TransportError(f"Could not update {ref}: {e}", ref=ref, operation="push") from e
        logger.debug("Ref %s now holds %d files (%d pushed)", ref, len(entries), len(staged))
