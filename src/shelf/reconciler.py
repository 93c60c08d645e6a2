"""Reconciliation of the filesystem against the tracked-file store.

Per tracked path the states are:

    untracked --track--> CLEAN
    CLEAN --external edit--> DIRTY
    DIRTY --save--> CLEAN                 (baseline advanced to current bytes)
    DIRTY|MISSING|DELETED --restore--> CLEAN   (file rewritten from baseline)
    CLEAN|DIRTY --file removed--> MISSING
    any --untrack--> untracked

Status queries are pure: they read the filesystem and the store and never
write. ``save`` is the only operation that advances a baseline.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional, Union

from . import catalog
from .constants import OBJECT_GRACE_SECONDS
from .context import ShelfContext, canonicalize
from .core import (
    BatchResult,
    EntryState,
    EntryStatus,
    PathOutcome,
    TrackedEntry,
    UntrackResult,
)
from .diffing import render_diff
from .errors import (
    ConflictError,
    NotAFileError,
    NotTrackedError,
    PathNotFoundError,
    ShelfError,
    ShelfIOError,
)
from .hashing import fingerprint, read_file, read_files_parallel
from .interfaces import Prompter
from .objects import ObjectStore
from .scanner import DiscoveryScanner, ScanRules, ScanWarning
from .store import TrackedFileStore
from .utils import atomic_write_bytes

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

NEEDS_ATTENTION = (EntryStatus.DIRTY, EntryStatus.MISSING, EntryStatus.DELETED)


def compute_status(entry: TrackedEntry) -> EntryStatus:
    """Classify one entry against the live filesystem.

    Raises:
        ShelfIOError: If the file exists but cannot be read
    """
    try:
        data = read_file(entry.logical_path, operation="status")
    except PathNotFoundError:
        return EntryStatus.MISSING
    except NotAFileError:
        return EntryStatus.DELETED

    if fingerprint(data) == entry.fingerprint:
        return EntryStatus.CLEAN
    return EntryStatus.DIRTY


class StateReconciler:
    """Applies track/untrack/save/restore and computes status."""

    def __init__(
        self,
        store: TrackedFileStore,
        objects: ObjectStore,
        ctx: Optional[ShelfContext] = None,
    ):
        self.store = store
        self.objects = objects
        self.ctx = ctx or ShelfContext()
        self.scan_warnings: List[ScanWarning] = []

    @classmethod
    def open(cls, ctx: ShelfContext) -> "StateReconciler":
        """Build a reconciler over the store and objects of a context."""
        store = TrackedFileStore.open(ctx)
        return cls(store, ObjectStore(ctx.objects_dir), ctx)

    def _require(self, logical: str, operation: str) -> TrackedEntry:
        entry = self.store.get(logical)
        if entry is None:
            raise NotTrackedError(logical, operation=operation)
        return entry

    # ============= Queries =============

    def status(self, entry: TrackedEntry) -> EntryStatus:
        return compute_status(entry)

    def get_state(self, path: PathLike) -> EntryState:
        """Status of a single tracked path."""
        entry = self._require(canonicalize(path), "status")
        return EntryState(entry=entry, status=compute_status(entry))

    def list(self, dirty_only: bool = False) -> List[EntryState]:
        """All tracked entries with computed status, ordered by path.

        Args:
            dirty_only: Keep only entries that differ from their baseline
                (dirty, missing or deleted)
        """
        snapshot = self.store.snapshot()
        states = [EntryState(entry=e, status=compute_status(e)) for e in snapshot]
        if dirty_only:
            states = [s for s in states if s.status in NEEDS_ATTENTION]
        return states

    def diff(self, path: PathLike) -> str:
        """Unified diff from the saved baseline to the current file."""
        logical = canonicalize(path)
        entry = self._require(logical, "diff")
        baseline = self.objects.get(entry.fingerprint)
        try:
            current = read_file(logical, operation="diff")
        except (PathNotFoundError, NotAFileError):
            current = None
        return render_diff(logical, baseline, current)

    def diff_many(self, paths: Optional[Iterable[PathLike]] = None) -> str:
        """Concatenated diffs of paths, or of every entry needing attention."""
        targets = list(paths) if paths else [s.path for s in self.list(dirty_only=True)]
        return "".join(self.diff(p) for p in targets)

    # ============= Mutations =============

    def track(self, path: PathLike) -> TrackedEntry:
        """Start tracking a file with its current content as baseline.

        Raises:
            PathNotFoundError: If the file does not exist
            NotAFileError: If the path is a directory
            AlreadyTrackedError: If the canonical path is already tracked
        """
        logical = canonicalize(path)
        data = read_file(logical, operation="track")
        # Blob first, so a committed row always has its baseline content
        fp = self.objects.put(data)
        return self.store.add(logical, fp)

    def track_many(self, paths: Iterable[PathLike]) -> BatchResult:
        """Track several files; one failure never aborts the others.

        Files are read and fingerprinted in parallel, then stored one by one.
        """
        logicals: List[str] = []
        for p in paths:
            logical = canonicalize(p)
            if logical not in logicals:
                logicals.append(logical)

        contents = read_files_parallel([Path(p) for p in logicals], max_workers=self.ctx.config.workers)

        result = BatchResult()
        for logical in logicals:
            content = contents[Path(logical)]
            if not content.ok:
                result.outcomes.append(PathOutcome(path=logical, ok=False, error=str(content.error)))
                continue
            try:
                self.objects.put(content.data)
                entry = self.store.add(logical, content.fingerprint)
            except ShelfError as e:
                logger.debug("track %s failed: %s", logical, e)
                result.outcomes.append(PathOutcome(path=logical, ok=False, error=str(e)))
                continue
            result.outcomes.append(PathOutcome(path=logical, ok=True, entry=entry))
        return result

    def untrack(self, path: PathLike, recursive: bool = False) -> UntrackResult:
        """Stop tracking a path, or everything below a directory.

        Raises:
            NotTrackedError: In non-recursive mode when no entry matches exactly
        """
        logical = canonicalize(path)
        if not recursive:
            self.store.remove(logical)
            return UntrackResult(target=logical, removed=[logical])

        removed = []
        for entry in self.store.under(logical):
            # Another process may have removed it since the snapshot
            if self.store.remove(entry.logical_path, missing_ok=True):
                removed.append(entry.logical_path)

        if not removed:
            logger.info("Nothing tracked under %s", logical)
        return UntrackResult(target=logical, recursive=True, removed=removed)

    def save(self, path: PathLike) -> TrackedEntry:
        """Accept the current content of a tracked file as its new baseline.

        Raises:
            NotTrackedError: If the path was never tracked
            PathNotFoundError: If the file is missing (the entry stays tracked)
        """
        logical = canonicalize(path)
        self._require(logical, "save")
        data = read_file(logical, operation="save")
        fp = self.objects.put(data)
        return self.store.update_fingerprint(logical, fp)

    def save_all(self) -> BatchResult:
        """Save every dirty entry; missing ones are reported, not saved."""
        result = BatchResult()
        for state in self.list(dirty_only=True):
            logical = state.path
            if state.status is not EntryStatus.DIRTY:
                result.outcomes.append(PathOutcome(path=logical, ok=False, error=f"file is {state.status.value}"))
                continue
            try:
                entry = self.save(logical)
            except ShelfError as e:
                result.outcomes.append(PathOutcome(path=logical, ok=False, error=str(e)))
                continue
            result.outcomes.append(PathOutcome(path=logical, ok=True, entry=entry))
        return result

    def restore(self, path: PathLike) -> TrackedEntry:
        """Rewrite a file from its saved baseline.

        Raises:
            NotTrackedError: If the path is not tracked
            NotAFileError: If a directory now occupies the path
            ShelfIOError: If the baseline object is missing or the write fails
        """
        logical = canonicalize(path)
        entry = self._require(logical, "restore")
        data = self.objects.get(entry.fingerprint)

        target = Path(logical)
        if target.is_dir():
            raise NotAFileError(logical, operation="restore")

        mode = None
        if target.exists():
            mode = target.stat().st_mode & 0o777
        try:
            atomic_write_bytes(target, data, mode=mode)
        except OSError as e:
            raise ShelfIOError(logical, e.strerror or str(e), operation="restore") from e

        logger.debug("Restored %s from %s", logical, entry.fingerprint)
        return entry

    def write_content(self, path: PathLike, data: bytes, expected: Optional[str]) -> TrackedEntry:
        """Write new content to a file and record it as the baseline.

        Used by pull to apply remote content; tracks the path if needed.
        The check against ``expected``, the write and the store update all
        happen under the path lock.

        Args:
            path: File to write
            data: New content
            expected: Fingerprint the file had when the pull was planned,
                or None if nothing existed at the path

        Raises:
            ConflictError: If the file changed since the pull was planned
            NotAFileError: If something other than a file occupies the path
        """
        logical = canonicalize(path)
        target = Path(logical)
        with self.store.hold(logical, "pull"):
            try:
                current = fingerprint(read_file(logical, operation="pull"))
            except PathNotFoundError:
                current = None
            if current != expected:
                raise ConflictError([logical], operation="pull")

            mode = target.stat().st_mode & 0o777 if current is not None else None
            try:
                atomic_write_bytes(target, data, mode=mode)
            except OSError as e:
                raise ShelfIOError(logical, e.strerror or str(e), operation="pull") from e
            fp = self.objects.put(data)
            return self.store.add(logical, fp, update=True)

    def prune_objects(self, grace: float = OBJECT_GRACE_SECONDS) -> int:
        """Delete baseline objects no entry refers to.

        Objects younger than ``grace`` seconds are kept, so a concurrent
        track that has stored its blob but not yet its row keeps it.
        """
        removed = self.objects.prune((e.fingerprint for e in self.store.snapshot()), grace=grace)
        logger.info("Removed %d unreferenced objects", removed)
        return removed

    # ============= Suggestions =============

    def suggest_candidates(self, root: Optional[PathLike] = None) -> List[Path]:
        """Untracked files worth suggesting, well-known dotfiles first."""
        root = Path(root).expanduser() if root else self.ctx.scan_root
        root = Path(os.path.abspath(root))
        tracked = set(self.store.snapshot().paths)

        candidates: List[Path] = []
        seen = set()

        def consider(p: Path) -> None:
            logical = canonicalize(p)
            if logical in tracked or logical in seen:
                return
            seen.add(logical)
            candidates.append(p)

        for known in catalog.existing(root):
            consider(known)

        scanner = DiscoveryScanner(ScanRules.from_config(self.ctx.config))
        for found in scanner.scan(root):
            consider(found)
        self.scan_warnings = scanner.warnings

        return candidates

    def suggest(self, prompter: Prompter, root: Optional[PathLike] = None) -> BatchResult:
        """Offer untracked candidates for selection and track the accepted ones."""
        candidates = [str(c) for c in self.suggest_candidates(root)]
        if not candidates:
            return BatchResult()

        offered = set(candidates)
        selected = [c for c in prompter.choose_many(candidates) if c in offered]
        if not selected:
            return BatchResult()
        return self.track_many(selected)
