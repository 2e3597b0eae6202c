"""Sync domain — engine, download planning and diffs."""

from foliosync.sync.comparer import plan_download
from foliosync.sync.comparer import PlannedAction
from foliosync.sync.diff import unified_diff
from foliosync.sync.engine import SyncEngine

__all__ = [
    "plan_download",
    "PlannedAction",
    "SyncEngine",
    "unified_diff",
]
