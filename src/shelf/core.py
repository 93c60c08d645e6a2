"""Core data models for shelf.

Plan/Apply Pattern for Sync:
----------------------------
Push and pull first build a plan from a store snapshot and the current
filesystem, then apply it. Conflicts are detected while planning, so a
pull that cannot be applied safely fails before any file is written.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .utils import is_relative_to


# ============= Tracked Entries =============

class TrackedEntry(BaseModel):
    """One tracked file (stored as a row in tracked.sqlite).

    ``logical_path`` is the canonical absolute POSIX path and the unique key.
    """

    model_config = ConfigDict(frozen=True)

    logical_path: str
    fingerprint: str  # sha256:...
    tracked_at: float
    last_saved_at: float


class EntryStatus(str, Enum):
    """Status derived by comparing the filesystem with the baseline."""

    CLEAN = "clean"
    DIRTY = "dirty"
    MISSING = "missing"  # Nothing exists at the path
    DELETED = "deleted"  # Path exists but is no longer a regular file


class EntryState(BaseModel):
    """A tracked entry together with its computed status."""

    model_config = ConfigDict(frozen=True)

    entry: TrackedEntry
    status: EntryStatus

    @property
    def path(self) -> str:
        return self.entry.logical_path


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable point-in-time view of all tracked entries.

    Multi-step operations read from one snapshot so they see a consistent
    view even if another process mutates the store meanwhile.
    """

    entries: Tuple[TrackedEntry, ...] = ()
    taken_at: float = 0.0

    def __iter__(self) -> Iterator[TrackedEntry]:
        return iter(self.entries)

    @property
    def paths(self) -> List[str]:
        return [e.logical_path for e in self.entries]

    def get(self, logical_path: str) -> Optional[TrackedEntry]:
        for entry in self.entries:
            if entry.logical_path == logical_path:
                return entry
        return None

    def under(self, prefix: str) -> List[TrackedEntry]:
        """Entries at or below a directory prefix."""
        return [e for e in self.entries if is_relative_to(e.logical_path, prefix)]


# ============= Operation Results =============

class PathOutcome(BaseModel):
    """Per-path result of a batch operation."""

    path: str
    ok: bool
    error: Optional[str] = None
    entry: Optional[TrackedEntry] = None


class BatchResult(BaseModel):
    """Result of a batch operation with partial success."""

    outcomes: List[PathOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[str]:
        return [o.path for o in self.outcomes if o.ok]

    @property
    def failed(self) -> Dict[str, str]:
        return {o.path: o.error or "" for o in self.outcomes if not o.ok}

    @property
    def all_ok(self) -> bool:
        return all(o.ok for o in self.outcomes)

    def summary(self) -> str:
        parts = [f"✓ {len(self.succeeded)} succeeded"]
        if self.failed:
            parts.append(f"✗ {len(self.failed)} failed")
        return ", ".join(parts)


class UntrackResult(BaseModel):
    """Result of an untrack operation."""

    target: str
    recursive: bool = False
    removed: List[str] = Field(default_factory=list)

    @property
    def noop(self) -> bool:
        return not self.removed


# ============= Sync Plans =============

class Resolution(str, Enum):
    """User decision for a diverged path."""

    SAVE_AND_PUSH = "save and push"
    SKIP = "skip"
    KEEP_LOCAL = "keep local"
    TAKE_REMOTE = "take remote"
    ABORT = "abort"


class PushPlan(BaseModel):
    """Entries to push, split by local status."""

    ref: str
    clean: List[str] = Field(default_factory=list)
    dirty: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)  # Missing or deleted locally

    @property
    def has_dirty(self) -> bool:
        return bool(self.dirty)

    def summary(self) -> str:
        parts = [f"↑ {len(self.clean) + len(self.dirty)} files"]
        if self.dirty:
            parts.append(f"⚠ {len(self.dirty)} with unsaved changes")
        if self.skipped:
            parts.append(f"{len(self.skipped)} missing locally")
        return ", ".join(parts)


class PullPlan(BaseModel):
    """What a pull would do, computed before anything is written."""

    ref: str
    will_update: List[str] = Field(default_factory=list)  # Tracked & clean locally
    will_add: List[str] = Field(default_factory=list)  # Not present locally
    will_restore: List[str] = Field(default_factory=list)  # Tracked but missing locally
    unchanged: List[str] = Field(default_factory=list)
    skipped_missing: List[str] = Field(default_factory=list)
    conflicts: List[str] = Field(default_factory=list)

    # Captured while planning: remote bytes, and local fingerprints (None if absent)
    contents: Dict[str, bytes] = Field(default_factory=dict, exclude=True, repr=False)
    local_fingerprints: Dict[str, Optional[str]] = Field(default_factory=dict, exclude=True, repr=False)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def summary(self) -> str:
        changes = len(self.will_update) + len(self.will_add) + len(self.will_restore)
        parts = [f"↓ {changes} files" if changes else "No changes"]
        if self.conflicts:
            parts.append(f"⚠ {len(self.conflicts)} conflicts")
        if self.skipped_missing:
            parts.append(f"{len(self.skipped_missing)} missing locally (skipped)")
        return ", ".join(parts)


class PushResult(BaseModel):
    """Result of a completed push."""

    ref: str
    pushed: List[str] = Field(default_factory=list)
    saved: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)

    def summary(self) -> str:
        parts = [f"✓ Pushed {len(self.pushed)} files to {self.ref}"]
        if self.saved:
            parts.append(f"saved {len(self.saved)} first")
        if self.skipped:
            parts.append(f"skipped {len(self.skipped)}")
        return ", ".join(parts)


class PullResult(BaseModel):
    """Result of a completed pull."""

    ref: str
    written: List[str] = Field(default_factory=list)
    kept_local: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)
    changed_locally: List[str] = Field(default_factory=list)  # Edited between plan and apply

    def summary(self) -> str:
        parts = [f"✓ Pulled {len(self.written)} files from {self.ref}"]
        if self.kept_local:
            parts.append(f"kept {len(self.kept_local)} local")
        if self.changed_locally:
            parts.append(f"skipped {len(self.changed_locally)} changed locally")
        return ", ".join(parts)
