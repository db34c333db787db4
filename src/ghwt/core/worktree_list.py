"""Discovery of worktrees under ``<worktrees_root>/<project>/<kind>/<name...>``."""

import logging
from pathlib import Path
from typing import Optional

from ghwt.config import Config
from ghwt.core.paths import ProjectPaths
from ghwt.models.identity import IdentityKind
from ghwt.models.worktree_info import WorktreeEntry

logger = logging.getLogger(__name__)


def is_git_worktree(path: Path) -> bool:
    """A linked worktree has a ``.git`` file (not a directory) pointing at its repository."""
    return (path / ".git").is_file()


def _find_worktrees(
    directory: Path,
    project: str,
    kind: IdentityKind,
    prefix: str = "",
) -> list[WorktreeEntry]:
    """Recurse into ``directory`` so nested branch names such as ``fix/bug-1`` are found."""
    found: list[WorktreeEntry] = []

    try:
        entries = sorted(p for p in directory.iterdir() if p.is_dir())
    except OSError as e:
        logger.debug(f"Skipping unreadable directory {directory}: {e}")
        return found

    for entry in entries:
        name = f"{prefix}/{entry.name}" if prefix else entry.name
        if is_git_worktree(entry):
            found.append(WorktreeEntry(project=project, kind=kind, name=name, path=entry))
        else:
            found.extend(_find_worktrees(entry, project, kind, name))

    return found


def list_worktrees(config: Config, project: Optional[str] = None) -> list[WorktreeEntry]:
    """
    List all worktrees, optionally for a single project.

    Args:
        config: Configuration providing the worktrees root.
        project: Only list worktrees of this project.

    Returns:
        Worktrees sorted by project, then kind and name.
    """
    worktrees_root = ProjectPaths.load(config).worktrees_root
    if not worktrees_root.is_dir():
        return []

    worktrees: list[WorktreeEntry] = []
    for project_dir in sorted(p for p in worktrees_root.iterdir() if p.is_dir()):
        if project and project_dir.name != project:
            continue

        for kind in IdentityKind:
            kind_dir = project_dir / kind.value
            if kind_dir.is_dir():
                worktrees.extend(_find_worktrees(kind_dir, project_dir.name, kind))

    worktrees.sort(key=lambda wt: (wt.project, wt.kind.value, wt.name))
    return worktrees
