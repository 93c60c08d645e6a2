"""Discovery of candidate dotfiles below a directory.

The scan is a lazy generator: entries are produced while walking, so memory
stays bounded on large trees. Each call to ``scan`` starts a fresh walk in
sorted order, so re-running it yields the same sequence absent filesystem
changes.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from .config import ShelfConfig
from .ignore import IgnoreSpec
from .utils import humanize_size

logger = logging.getLogger(__name__)

SNIFF_BYTES = 8192


@dataclass
class ScanRules:
    """Include/exclude rules for a discovery scan."""

    ignore: IgnoreSpec = field(default_factory=IgnoreSpec)
    skip_directories: List[str] = field(default_factory=list)  # Directory names
    skip_files: List[str] = field(default_factory=list)  # Glob patterns on file names
    max_file_size: Optional[int] = 1024 * 1024
    max_depth: Optional[int] = None
    skip_binary: bool = True

    @classmethod
    def from_config(cls, config: ShelfConfig) -> "ScanRules":
        return cls(
            ignore=IgnoreSpec(config.ignore),
            skip_directories=list(config.skip_directories),
            skip_files=list(config.skip_files),
            max_file_size=config.max_file_size,
            max_depth=config.max_depth,
        )


@dataclass
class ScanWarning:
    """A subtree or file the scan could not read."""

    path: str
    reason: str


def _looks_binary(path: Path) -> bool:
    with path.open("rb") as f:
        return b"\x00" in f.read(SNIFF_BYTES)


class DiscoveryScanner:
    """Recursive, symlink-safe walker producing candidate file paths."""

    def __init__(self, rules: Optional[ScanRules] = None):
        self.rules = rules or ScanRules()
        self.warnings: List[ScanWarning] = []

    def _warn(self, path: Path, error: OSError) -> None:
        reason = error.strerror or str(error)
        self.warnings.append(ScanWarning(path=str(path), reason=reason))
        logger.warning("Skipping %s: %s", path, reason)

    def _skip_dir(self, name: str, rel: str) -> bool:
        if name in self.rules.skip_directories:
            return True
        return not self.rules.ignore.should_traverse(rel)

    def _skip_file(self, name: str, rel: str) -> bool:
        if any(fnmatch.fnmatch(name, pat) for pat in self.rules.skip_files):
            return True
        return self.rules.ignore.is_ignored(rel)

    def _accept(self, path: Path, entry: os.DirEntry) -> bool:
        """Apply the size and binary filters to a regular file."""
        try:
            limit = self.rules.max_file_size
            if limit is not None:
                size = entry.stat(follow_symlinks=False).st_size
                if size > limit:
                    logger.debug("Skipping %s: %s over limit", path, humanize_size(size))
                    return False
            if self.rules.skip_binary and _looks_binary(path):
                return False
        except OSError as e:
            self._warn(path, e)
            return False
        return True

    def scan(self, root: Path) -> Iterator[Path]:
        """Yield candidate files below root.

        Symlinks are neither followed nor yielded. Unreadable directories and
        files are recorded in ``warnings`` and skipped.
        """
        root = Path(root)
        self.warnings = []
        return self._walk(root)

    def _walk(self, root: Path) -> Iterator[Path]:
        # Stack of (directory, depth); reversed pushes keep sorted order
        stack = [(root, 0)]
        while stack:
            directory, depth = stack.pop()
            try:
                with os.scandir(directory) as it:
                    entries = sorted(it, key=lambda e: e.name)
            except OSError as e:
                self._warn(directory, e)
                continue

            subdirs = []
            for entry in entries:
                path = Path(entry.path)
                rel = path.relative_to(root).as_posix()
                try:
                    if entry.is_symlink():
                        continue
                    is_dir = entry.is_dir(follow_symlinks=False)
                    is_file = entry.is_file(follow_symlinks=False)
                except OSError as e:
                    self._warn(path, e)
                    continue

                if is_dir:
                    if self.rules.max_depth is not None and depth + 1 >= self.rules.max_depth:
                        continue
                    if not self._skip_dir(entry.name, rel):
                        subdirs.append(path)
                elif is_file:
                    if self._skip_file(entry.name, rel):
                        continue
                    if self._accept(path, entry):
                        yield path

            for sub in reversed(subdirs):
                stack.append((sub, depth + 1))
