"""
Core modules for ghwt.

This package contains the core business logic for:
- Identifier classification and path derivation
- Worktree creation and removal
- Note persistence and metadata sync
- tmux session management
"""

from ghwt.core.identity import InvalidIdentifier, LegacyPrefixIdentifier, classify
from ghwt.core.paths import ProjectPaths, note_path, worktree_path
from ghwt.core.sync import (
    SyncConfig,
    SyncReport,
    SyncService,
    SyncStatus,
    WorktreeSyncResult,
)
from ghwt.core.worktree import PathCollision, WorktreeError, WorktreeManager

__all__ = [
    "InvalidIdentifier",
    "LegacyPrefixIdentifier",
    "classify",
    "ProjectPaths",
    "note_path",
    "worktree_path",
    "SyncConfig",
    "SyncReport",
    "SyncService",
    "SyncStatus",
    "WorktreeSyncResult",
    "PathCollision",
    "WorktreeError",
    "WorktreeManager",
]
