"""Durable store of tracked entries.

Entries live in a SQLite database (WAL journal) keyed by logical path.
Every mutation:

1. Takes an exclusive per-path lock file via portalocker, so two shelf
   processes mutating the same path are serialized while different paths
   proceed concurrently
2. Runs in its own BEGIN IMMEDIATE transaction, validated before commit
3. Commits before returning, so success is only reported once durable

Callers receive frozen TrackedEntry copies or a StoreSnapshot, never a
handle onto the rows themselves.
"""

from __future__ import annotations
import contextlib
import hashlib
import logging
import sqlite3
import threading
from pathlib import Path, PurePosixPath
from typing import Iterator, List, Optional, Set

import portalocker

from .core import StoreSnapshot, TrackedEntry
from .errors import AlreadyTrackedError, ContentionError, NotTrackedError, ShelfIOError
from .utils import get_timestamp

logger = logging.getLogger(__name__)

_COLUMNS = "logical_path, fingerprint, tracked_at, last_saved_at"


def _row_to_entry(row: tuple) -> TrackedEntry:
    return TrackedEntry(
        logical_path=row[0],
        fingerprint=row[1],
        tracked_at=row[2],
        last_saved_at=row[3],
    )


def _is_busy(error: sqlite3.OperationalError) -> bool:
    msg = str(error).lower()
    return "locked" in msg or "busy" in msg


def _validate_logical_path(logical_path: str) -> None:
    """Reject keys that are not canonical absolute POSIX paths.

    Raises:
        ValueError: If the path is relative or not normalized
    """
    p = PurePosixPath(logical_path)
    if not p.is_absolute():
        raise ValueError(f"Logical path must be absolute: {logical_path!r}")
    if ".." in p.parts or str(p) != logical_path:
        raise ValueError(f"Logical path must be canonical: {logical_path!r}")


class TrackedFileStore:
    """SQLite-backed mapping from logical path to tracked entry."""

    def __init__(
        self,
        db_path: Path,
        locks_dir: Optional[Path] = None,
        lock_timeout: float = 10.0,
        busy_timeout: float = 5.0,
    ):
        """Open (and create if needed) the store.

        Args:
            db_path: Path to SQLite database file
            locks_dir: Directory for per-path lock files (default: next to db)
            lock_timeout: Seconds to wait for a per-path lock
            busy_timeout: Seconds SQLite waits for the write lock
        """
        self.db_path = Path(db_path)
        self.locks_dir = Path(locks_dir) if locks_dir else self.db_path.parent / "locks"
        self.lock_timeout = lock_timeout
        self.busy_timeout = busy_timeout
        self._held = threading.local()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.locks_dir.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @classmethod
    def open(cls, ctx) -> "TrackedFileStore":
        """Open the store described by a ShelfContext."""
        ctx.ensure_dirs()
        return cls(ctx.store_path, ctx.locks_dir, lock_timeout=ctx.config.lock_timeout)

    # ---- connection handling ------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout, isolation_level=None)
            conn.execute("PRAGMA synchronous = FULL")
        except sqlite3.Error as e:
            raise ShelfIOError(str(self.db_path), str(e), operation="open") from e
        return conn

    def _init_database(self) -> None:
        """Initialize SQLite schema."""
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tracked_entries (
                    logical_path TEXT PRIMARY KEY,
                    fingerprint TEXT NOT NULL,
                    tracked_at REAL NOT NULL,
                    last_saved_at REAL NOT NULL
                )
            """)
        except sqlite3.OperationalError as e:
            if _is_busy(e):
                raise ContentionError(str(self.db_path), operation="open") from e
            raise ShelfIOError(str(self.db_path), str(e), operation="open") from e
        finally:
            conn.close()

    def _held_paths(self) -> Set[str]:
        if not hasattr(self._held, "paths"):
            self._held.paths = set()
        return self._held.paths

    @contextlib.contextmanager
    def _path_lock(self, logical_path: str, operation: str) -> Iterator[None]:
        """Hold the exclusive lock for one logical path.

        Lock files persist to avoid inode coordination issues; the OS
        releases the lock itself if the process dies. Re-entering a lock
        this thread already holds is a no-op.
        """
        held = self._held_paths()
        if logical_path in held:
            yield
            return

        name = hashlib.sha256(logical_path.encode("utf-8")).hexdigest()
        lock_path = self.locks_dir / f"{name}.lock"
        try:
            with portalocker.Lock(str(lock_path), "a", timeout=self.lock_timeout):
                held.add(logical_path)
                try:
                    yield
                finally:
                    held.discard(logical_path)
        except portalocker.exceptions.LockException as e:
            raise ContentionError(logical_path, operation=operation, timeout=self.lock_timeout) from e

    def hold(self, logical_path: str, operation: str = "lock"):
        """Keep a path locked across several steps.

        Store mutations of the same path made inside the block run under
        the lock already held.

        Raises:
            ContentionError: If another process holds the path
        """
        _validate_logical_path(logical_path)
        return self._path_lock(logical_path, operation)

    @contextlib.contextmanager
    def _transaction(self, logical_path: str, operation: str) -> Iterator[sqlite3.Connection]:
        """Write transaction that commits on success and rolls back on any error."""
        conn = self._connect()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if _is_busy(e):
                    raise ContentionError(logical_path, operation=operation) from e
                raise ShelfIOError(str(self.db_path), str(e), operation=operation) from e

            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.OperationalError as e:
                conn.execute("ROLLBACK")
                if _is_busy(e):
                    raise ContentionError(logical_path, operation=operation) from e
                raise ShelfIOError(str(self.db_path), str(e), operation=operation) from e
        finally:
            conn.close()

    @contextlib.contextmanager
    def _mutation(self, logical_path: str, operation: str) -> Iterator[sqlite3.Connection]:
        _validate_logical_path(logical_path)
        with self._path_lock(logical_path, operation):
            with self._transaction(logical_path, operation) as conn:
                yield conn

    @staticmethod
    def _fetch(conn: sqlite3.Connection, logical_path: str) -> Optional[TrackedEntry]:
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM tracked_entries WHERE logical_path = ?",
            (logical_path,),
        ).fetchone()
        return _row_to_entry(row) if row else None

    # ---- mutations -----------------------------------------------------------

    def add(self, logical_path: str, fingerprint: str, *, update: bool = False) -> TrackedEntry:
        """Insert a new entry.

        Args:
            logical_path: Canonical absolute path
            fingerprint: Baseline fingerprint
            update: Replace the fingerprint of an existing entry instead of failing

        Raises:
            AlreadyTrackedError: If the path is tracked and update is False
            ContentionError: If another process holds the entry
        """
        with self._mutation(logical_path, "track") as conn:
            existing = self._fetch(conn, logical_path)
            now = get_timestamp()

            if existing is not None:
                if not update:
                    raise AlreadyTrackedError(logical_path)
                entry = existing.model_copy(update={
                    "fingerprint": fingerprint,
                    "last_saved_at": max(now, existing.last_saved_at),
                })
                conn.execute(
                    "UPDATE tracked_entries SET fingerprint = ?, last_saved_at = ? WHERE logical_path = ?",
                    (entry.fingerprint, entry.last_saved_at, logical_path),
                )
                logger.debug("Updated %s -> %s", logical_path, fingerprint)
                return entry

            entry = TrackedEntry(
                logical_path=logical_path,
                fingerprint=fingerprint,
                tracked_at=now,
                last_saved_at=now,
            )
            try:
                conn.execute(
                    f"INSERT INTO tracked_entries ({_COLUMNS}) VALUES (?, ?, ?, ?)",
                    (entry.logical_path, entry.fingerprint, entry.tracked_at, entry.last_saved_at),
                )
            except sqlite3.IntegrityError as e:
                raise AlreadyTrackedError(logical_path) from e

        logger.debug("Tracked %s (%s)", logical_path, fingerprint)
        return entry

    def remove(self, logical_path: str, *, missing_ok: bool = False) -> bool:
        """Delete an entry.

        Args:
            logical_path: Canonical absolute path
            missing_ok: Succeed quietly if the path is not tracked

        Returns:
            True if a row was removed

        Raises:
            NotTrackedError: If absent and missing_ok is False
        """
        with self._mutation(logical_path, "untrack") as conn:
            cursor = conn.execute("DELETE FROM tracked_entries WHERE logical_path = ?", (logical_path,))
            removed = cursor.rowcount > 0
            if not removed and not missing_ok:
                raise NotTrackedError(logical_path, operation="untrack")

        if removed:
            logger.debug("Untracked %s", logical_path)
        return removed

    def update_fingerprint(self, logical_path: str, fingerprint: str) -> TrackedEntry:
        """Replace the baseline fingerprint of an existing entry.

        Raises:
            NotTrackedError: If the path is not tracked
        """
        with self._mutation(logical_path, "save") as conn:
            existing = self._fetch(conn, logical_path)
            if existing is None:
                raise NotTrackedError(logical_path, operation="save")

            entry = existing.model_copy(update={
                "fingerprint": fingerprint,
                "last_saved_at": max(get_timestamp(), existing.last_saved_at),
            })
            conn.execute(
                "UPDATE tracked_entries SET fingerprint = ?, last_saved_at = ? WHERE logical_path = ?",
                (entry.fingerprint, entry.last_saved_at, logical_path),
            )

        logger.debug("Saved %s -> %s", logical_path, fingerprint)
        return entry

    # ---- queries ---------------------------------------------------------------

    def get(self, logical_path: str) -> Optional[TrackedEntry]:
        conn = self._connect()
        try:
            return self._fetch(conn, logical_path)
        except sqlite3.Error as e:
            raise ShelfIOError(str(self.db_path), str(e), operation="get") from e
        finally:
            conn.close()

    def list(self) -> List[TrackedEntry]:
        """All entries ordered by logical path."""
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM tracked_entries ORDER BY logical_path"
            ).fetchall()
        except sqlite3.Error as e:
            raise ShelfIOError(str(self.db_path), str(e), operation="list") from e
        finally:
            conn.close()
        return [_row_to_entry(r) for r in rows]

    def snapshot(self) -> StoreSnapshot:
        """Take an immutable view of every entry (single consistent read)."""
        return StoreSnapshot(entries=tuple(self.list()), taken_at=get_timestamp())

    def under(self, prefix: str) -> List[TrackedEntry]:
        """Entries whose logical path is the prefix or lies below it."""
        return self.snapshot().under(prefix)
