"""Push and pull of tracked files against a remote.

Both directions are two-phase: a plan is computed from one store snapshot
and the current filesystem, then applied. Every conflict is found while
planning, so a pull that is refused or aborted has written nothing.
"""

import logging
import time
from typing import Dict, List, Optional, Tuple

from .constants import DEFAULT_REMOTE_REF
from .core import EntryStatus, PullPlan, PullResult, PushPlan, PushResult, Resolution
from .errors import ConflictError, NotAFileError, PathNotFoundError, TransportError
from .hashing import fingerprint, read_file
from .interfaces import Prompter, RemoteSync
from .reconciler import StateReconciler

logger = logging.getLogger(__name__)


class SyncCoordinator:
    """Moves tracked files between the local store and a RemoteSync."""

    def __init__(
        self,
        reconciler: StateReconciler,
        remote: RemoteSync,
        prompter: Optional[Prompter] = None,
        fetch_retries: int = 3,
        retry_delay: float = 0.2,
        default_ref: str = DEFAULT_REMOTE_REF,
    ):
        self.reconciler = reconciler
        self.remote = remote
        self.prompter = prompter
        self.fetch_retries = max(0, fetch_retries)
        self.retry_delay = retry_delay
        self.default_ref = default_ref

    def _ask(self, message: str, options: List[Resolution]) -> Resolution:
        choice = self.prompter.choose_one(message, [o.value for o in options])
        return Resolution(choice)

    # ============= Push =============

    def push_plan(self, remote_ref: Optional[str] = None) -> PushPlan:
        """Split tracked entries into what push would send and skip."""
        plan = PushPlan(ref=remote_ref or self.default_ref)
        for state in self.reconciler.list():
            if state.status is EntryStatus.CLEAN:
                plan.clean.append(state.path)
            elif state.status is EntryStatus.DIRTY:
                plan.dirty.append(state.path)
            else:
                plan.skipped.append(state.path)
        return plan

    def push(self, remote_ref: Optional[str] = None) -> PushResult:
        """Upload every present tracked file to the remote.

        Files with unsaved changes need a decision first: save them and
        push, leave them out, or abort the whole push. Files left out keep
        whatever copy the remote already has.

        Raises:
            ConflictError: Unsaved changes and no prompter, or user aborted
            TransportError: Remote rejected the upload (never retried)
        """
        plan = self.push_plan(remote_ref)

        to_save: List[str] = []
        skipped: List[str] = list(plan.skipped)
        if plan.has_dirty:
            if self.prompter is None:
                raise ConflictError(plan.dirty, operation="push")
            for path in plan.dirty:
                choice = self._ask(
                    f"{path} has unsaved changes",
                    [Resolution.SAVE_AND_PUSH, Resolution.SKIP, Resolution.ABORT],
                )
                if choice is Resolution.ABORT:
                    raise ConflictError(plan.dirty, operation="push")
                if choice is Resolution.SAVE_AND_PUSH:
                    to_save.append(path)
                else:
                    skipped.append(path)

        # All decisions are made before the first save
        for path in to_save:
            self.reconciler.save(path)

        files: Dict[str, bytes] = {}
        for path in sorted(plan.clean + to_save):
            files[path] = read_file(path, operation="push")

        self.remote.push(plan.ref, files)
        logger.info("Pushed %d files to %s", len(files), plan.ref)

        return PushResult(ref=plan.ref, pushed=sorted(files), saved=to_save, skipped=sorted(skipped))

    # ============= Pull =============

    def _fetch_with_retry(self, ref: str) -> Dict[str, bytes]:
        """Fetch a ref, retrying transport failures with linear backoff."""
        attempts = self.fetch_retries + 1
        for attempt in range(attempts):
            try:
                return self.remote.fetch(ref)
            except TransportError as e:
                if attempt + 1 >= attempts:
                    raise
                logger.warning("Fetch of %s failed (attempt %d/%d): %s", ref, attempt + 1, attempts, e)
                time.sleep(self.retry_delay * (attempt + 1))
        raise TransportError(f"Could not fetch {ref}", ref=ref, operation="pull")

    def _plan(self, ref: str, files: Dict[str, bytes], restore_missing: bool) -> PullPlan:
        plan = PullPlan(ref=ref, contents=files)
        snapshot = self.reconciler.store.snapshot()

        for path in sorted(files):
            remote_fp = fingerprint(files[path])
            entry = snapshot.get(path)

            try:
                local_fp = fingerprint(read_file(path, operation="pull"))
            except PathNotFoundError:
                plan.local_fingerprints[path] = None
                if entry is None:
                    plan.will_add.append(path)
                elif restore_missing:
                    plan.will_restore.append(path)
                else:
                    plan.skipped_missing.append(path)
                continue
            except NotAFileError:
                # Something that is not a file occupies the path
                if entry is None:
                    plan.conflicts.append(path)
                else:
                    plan.skipped_missing.append(path)
                continue

            plan.local_fingerprints[path] = local_fp
            if local_fp == remote_fp:
                plan.unchanged.append(path)
            elif entry is not None and local_fp == entry.fingerprint:
                plan.will_update.append(path)
            else:
                plan.conflicts.append(path)

        return plan

    def pull_plan(self, remote_ref: Optional[str] = None, restore_missing: bool = False) -> PullPlan:
        """Fetch a ref once and classify its files without writing anything.

        The returned plan carries the fetched content and can be handed to
        ``pull_apply``.
        """
        ref = remote_ref or self.default_ref
        return self._plan(ref, self._fetch_with_retry(ref), restore_missing)

    def _resolve_conflicts(self, plan: PullPlan) -> Tuple[List[str], List[str]]:
        """Ask how to resolve each conflict; returns (take_remote, keep_local)."""
        if self.prompter is None:
            raise ConflictError(plan.conflicts, operation="pull")

        take_remote: List[str] = []
        keep_local: List[str] = []
        for path in plan.conflicts:
            choice = self._ask(
                f"{path} differs locally and on {plan.ref}",
                [Resolution.KEEP_LOCAL, Resolution.TAKE_REMOTE, Resolution.ABORT],
            )
            if choice is Resolution.ABORT:
                raise ConflictError(plan.conflicts, operation="pull")
            if choice is Resolution.TAKE_REMOTE:
                take_remote.append(path)
            else:
                keep_local.append(path)
        return take_remote, keep_local

    def pull_apply(self, plan: PullPlan) -> PullResult:
        """Apply a pull plan to the local files.

        Conflicts are resolved (or refused) before the first write. A file
        edited after the plan was made is left alone and reported in
        ``changed_locally``.

        Raises:
            ConflictError: Diverged files and no prompter, or user aborted.
                Raised before any file is written.
        """
        take_remote: List[str] = []
        keep_local: List[str] = []
        if plan.has_conflicts:
            take_remote, keep_local = self._resolve_conflicts(plan)

        written: List[str] = []
        changed: List[str] = []
        for path in plan.will_update + plan.will_add + plan.will_restore + take_remote:
            try:
                self.reconciler.write_content(
                    path,
                    plan.contents[path],
                    expected=plan.local_fingerprints.get(path),
                )
            except ConflictError:
                logger.warning("%s changed since the pull was planned; leaving it", path)
                changed.append(path)
                continue
            written.append(path)

        logger.info("Pulled %d files from %s", len(written), plan.ref)
        return PullResult(
            ref=plan.ref,
            written=sorted(written),
            kept_local=keep_local,
            unchanged=plan.unchanged,
            changed_locally=sorted(changed),
        )

    def pull(self, remote_ref: Optional[str] = None, restore_missing: bool = False) -> PullResult:
        """Fetch a ref and apply it to the local files.

        Args:
            remote_ref: Ref to pull (default: configured ref)
            restore_missing: Also rewrite tracked files that are missing locally

        Raises:
            ConflictError: Diverged files and no prompter, or user aborted.
                Raised before any file is written.
            TransportError: Fetch still failing after all retries
        """
        return self.pull_apply(self.pull_plan(remote_ref, restore_missing=restore_missing))
