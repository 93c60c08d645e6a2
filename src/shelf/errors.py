"""Custom exceptions for shelf.

Every error carries the path and operation it relates to where one exists,
so the CLI can render an actionable message.
"""

from typing import Iterable, List, Optional


class ShelfError(RuntimeError):
    """Base class for all shelf errors."""

    def __init__(self, message: str, path: Optional[str] = None, operation: Optional[str] = None):
        self.path = path
        self.operation = operation
        super().__init__(message)


# Path Errors
class PathNotFoundError(ShelfError):
    """Path does not exist on disk."""

    def __init__(self, path: str, operation: Optional[str] = None):
        super().__init__(f"Path not found: {path}", path=path, operation=operation)


class NotAFileError(ShelfError):
    """Path exists but is not a regular file."""

    def __init__(self, path: str, operation: Optional[str] = None):
        super().__init__(f"Not a regular file: {path}", path=path, operation=operation)


class ShelfIOError(ShelfError):
    """Filesystem error (permission denied, unreadable file, ...)."""

    def __init__(self, path: str, reason: str, operation: Optional[str] = None):
        self.reason = reason
        super().__init__(f"I/O error on {path}: {reason}", path=path, operation=operation)


# Store Errors
class StoreError(ShelfError):
    """Base class for tracked-file store errors."""
    pass


class AlreadyTrackedError(StoreError):
    """Path is already tracked."""

    def __init__(self, path: str, operation: Optional[str] = "track"):
        super().__init__(
            f"Already tracked: {path}. Use 'shelf save' to update its baseline.",
            path=path,
            operation=operation,
        )


class NotTrackedError(StoreError):
    """Path is not tracked."""

    def __init__(self, path: str, operation: Optional[str] = None):
        super().__init__(f"pathspec '{path}' did not match any tracked files", path=path, operation=operation)


class ContentionError(StoreError):
    """Another process is mutating the same entry."""

    def __init__(self, path: str, operation: Optional[str] = None, timeout: Optional[float] = None):
        self.timeout = timeout
        waited = f" after {timeout:g}s" if timeout is not None else ""
        super().__init__(
            f"Could not lock {path}{waited}: another shelf process is modifying it",
            path=path,
            operation=operation,
        )


# Sync Errors
class SyncError(ShelfError):
    """Base class for sync errors."""
    pass


class ConflictError(SyncError):
    """Local and remote content diverged and no resolution was applied."""

    def __init__(self, paths: Iterable[str], operation: Optional[str] = "pull"):
        self.paths: List[str] = sorted(paths)
        shown = ", ".join(self.paths[:3])
        if len(self.paths) > 3:
            shown += f" and {len(self.paths) - 3} more"
        super().__init__(
            f"{len(self.paths)} conflicting file(s): {shown}",
            path=self.paths[0] if self.paths else None,
            operation=operation,
        )


class TransportError(SyncError):
    """Remote unreachable or rejected the request."""

    def __init__(self, message: str, ref: Optional[str] = None, operation: Optional[str] = None):
        self.ref = ref
        super().__init__(message, operation=operation)


class InvalidRefError(SyncError):
    """Remote ref name is empty or could escape the remote's refs directory."""

    def __init__(self, ref: str, operation: Optional[str] = None):
        self.ref = ref
        super().__init__(
            f"Invalid remote ref: {ref!r} (use names like main or work/laptop)",
            operation=operation,
        )


# Text Generation Errors
class GeneratorError(ShelfError):
    """The configured text generator failed or returned nothing."""

    def __init__(self, command: str, reason: str):
        self.command = command
        super().__init__(f"Text generator '{command}' failed: {reason}", operation="draft")


# Configuration Errors
class ConfigError(ShelfError):
    """Configuration file could not be loaded."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Invalid configuration in {path}: {reason}", path=path, operation="config")
