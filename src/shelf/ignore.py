"""Gitignore-style exclusion rules for discovery scans.

Paths are matched relative to the scan root in POSIX form. Directories
are matched with a trailing slash so that ``name/`` patterns prune whole
subtrees before they are walked.
"""

from typing import Iterable, List

from pathspec import PathSpec
from pathspec.patterns import GitWildMatchPattern


# Never worth suggesting as dotfiles
DEFAULTS = [
    # Repositories, including shelf's own
    ".git/",
    ".hg/",
    ".svn/",
    ".bzr/",
    "_darcs/",
    "CVS/",
    ".shelf/",

    # Caches, trash and package managers
    ".cache/",
    ".local/share/Trash/",
    ".Trash/",
    "__pycache__/",
    "*.pyc",
    "node_modules/",
    ".npm/",
    ".yarn/",
    ".cargo/registry/",
    ".rustup/",
    ".venv/",
    "venv/",
    ".tox/",
    ".mypy_cache/",
    ".pytest_cache/",
    ".ruff_cache/",

    # Editor leftovers and OS metadata
    "*.swp",
    "*.swo",
    "*~",
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",

    # Private keys
    ".ssh/id_*",
    ".gnupg/",
]


def clean_patterns(lines: Iterable[str]) -> List[str]:
    """Drop blank lines and comments from user supplied patterns."""
    patterns = []
    for raw in lines:
        pattern = raw.strip()
        if pattern and not pattern.startswith("#"):
            patterns.append(pattern)
    return patterns


class IgnoreSpec:
    """Compiled set of exclusion patterns."""

    def __init__(self, extra: Iterable[str] = (), defaults: bool = True):
        """
        Args:
            extra: Patterns from configuration, added after the defaults
            defaults: Whether to start from the built-in denylist
        """
        self.patterns = (list(DEFAULTS) if defaults else []) + clean_patterns(extra)
        self.spec = PathSpec.from_lines(GitWildMatchPattern, self.patterns)

    def is_ignored(self, relpath: str) -> bool:
        """Whether a file at a root-relative path is excluded."""
        return self.spec.match_file(relpath)

    def should_traverse(self, dirpath: str) -> bool:
        """Whether the scan should descend into a root-relative directory."""
        return not self.spec.match_file(dirpath.rstrip("/") + "/")
