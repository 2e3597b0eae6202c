"""Unified diffs for compare results."""

from __future__ import annotations

import difflib

MAX_DIFF_LINES = 400


def unified_diff(remote_text: str, local_text: str, path: str) -> str:
    lines = list(
        difflib.unified_diff(
            remote_text.splitlines(keepends=True),
            local_text.splitlines(keepends=True),
            fromfile=f"remote/{path}",
            tofile=f"local/{path}",
        )
    )
    if len(lines) > MAX_DIFF_LINES:
        omitted = len(lines) - MAX_DIFF_LINES
        lines = lines[:MAX_DIFF_LINES] + [f"... {omitted} more diff lines omitted\n"]
    return "".join(lines)
