"""Unified diffs between a saved baseline and the current file."""

import difflib
from typing import Optional


def _decode(data: bytes) -> Optional[str]:
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def render_diff(path: str, baseline: bytes, current: Optional[bytes]) -> str:
    """Render a unified diff from baseline to current content.

    Args:
        path: Logical path shown in the diff headers
        baseline: Content at last save
        current: Current content, or None if the file is gone

    Returns:
        Diff text; empty string when contents are identical
    """
    if current is not None and current == baseline:
        return ""

    old_text = _decode(baseline)
    new_text = _decode(current) if current is not None else ""
    if old_text is None or new_text is None:
        return f"Binary files a{path} and b{path} differ\n"

    to_file = f"b{path}" if current is not None else "/dev/null"
    lines = difflib.unified_diff(
        old_text.splitlines(keepends=True),
        new_text.splitlines(keepends=True),
        fromfile=f"a{path}",
        tofile=to_file,
    )
    out = []
    for line in lines:
        out.append(line if line.endswith("\n") else line + "\n\\ No newline at end of file\n")
    return "".join(out)
