"""Protocols for the external capabilities shelf depends on.

Implementations are injected into the reconciler and sync coordinator, so
the core logic can be exercised with deterministic fakes.
"""

from typing import Dict, List, Mapping, Optional, Protocol, Sequence


class RemoteSync(Protocol):
    """
    Protocol for remote storage of tracked file content.

    Files are exchanged as a mapping of logical path to raw bytes.
    """

    def fetch(self, ref: str) -> Dict[str, bytes]:
        """
        Download every file stored under a ref.

        Must be idempotent, since callers retry it on TransportError.

        Args:
            ref: Remote reference (e.g. a branch name)

        Returns:
            Mapping of logical path to content; empty if ref doesn't exist

        Raises:
            TransportError: Remote unreachable or rejected the request
        """
        ...

    def push(self, ref: str, files: Mapping[str, bytes]) -> None:
        """
        Add or update files under a ref.

        Paths already stored under the ref but absent from files are kept.
        Never retried by callers.

        Raises:
            TransportError: Remote unreachable or rejected the request
            InvalidRefError: Ref name is not acceptable to the remote
        """
        ...


class Prompter(Protocol):
    """Protocol for interactive user choices."""

    def choose_many(self, candidates: Sequence[str]) -> List[str]:
        """Return the subset of candidates the user selected."""
        ...

    def choose_one(self, message: str, options: Sequence[str]) -> str:
        """Return the single option the user selected."""
        ...


class TextGenerator(Protocol):
    """Protocol for AI text completion providers."""

    def complete(self, prompt: str, context: Optional[str] = None) -> str:
        """Return generated text for a prompt and optional context."""
        ...
