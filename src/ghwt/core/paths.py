"""
Path derivation for worktrees, notes, sessions and CI artifacts.

Every function here is a pure computation over its arguments: nothing
touches the filesystem, and resolving the same inputs twice yields the
same paths.

Layout:
    <projects_root>/<worktrees_dir>/<project>/<kind>/<name...>
    <vault_path>/projects/<project>/worktrees/<flat-name>.md
"""

import re
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

from ghwt.config import Config
from ghwt.models.identity import Identity

NOTES_DIR = "projects"
NOTE_WORKTREES_DIR = "worktrees"
NOTE_SUFFIX = ".md"
CI_ARTIFACTS_DIR = "ci-artifacts"
CI_ARTIFACTS_CONFIG_DIR = "ci-artifacts-config"
SESSION_CONFIG_DIR = "terminal-session-config"
ARCHIVE_DIR = "old"

_SESSION_UNSAFE = re.compile(r"[.:]")


def flatten_name(name: str) -> str:
    """Replace slashes so a branch name fits in a single path segment."""
    return name.replace("/", "-")


def repository_path(projects_root: Path, config: Config, project: str) -> Path:
    """Get the path of the repository clone for a project."""
    return Path(projects_root) / config.repositories_dir / project


def worktree_path(
    projects_root: Path,
    config: Config,
    project: str,
    identity: Identity,
) -> Path:
    """
    Get the full path to a worktree directory.

    Slashes in the identity name are kept, so ``fix/bug-123`` becomes
    ``.../branch/fix/bug-123``.
    """
    return (
        Path(projects_root)
        / config.worktrees_dir
        / project
        / identity.kind.value
        / Path(*identity.name.split("/"))
    )


def note_dir(vault_path: Path, project: str) -> Path:
    """Get the directory holding all worktree notes of a project."""
    return Path(vault_path) / NOTES_DIR / project / NOTE_WORKTREES_DIR


def note_file_name(name: str) -> str:
    return f"{flatten_name(name)}{NOTE_SUFFIX}"


def note_path(vault_path: Path, project: str, name: str) -> Path:
    """
    Get the full path to a worktree note file.

    Notes are flat under ``projects/<project>/worktrees`` regardless of
    whether ``name`` came from a branch or a PR.
    """
    return note_dir(vault_path, project) / note_file_name(name)


def session_name(project: str, name: str) -> str:
    """
    Get the terminal multiplexer session name for a worktree.

    tmux treats '.' and ':' in a target as window and pane separators,
    so both become '-' like the slashes.
    """
    return _SESSION_UNSAFE.sub("-", f"{project}-{flatten_name(name)}")


def ci_artifacts_path(projects_root: Path, project: str, identity: Identity) -> Path:
    """Get the directory CI artifacts for a worktree are downloaded into."""
    ref = f"{identity.kind.value}-{flatten_name(identity.name)}"
    return Path(projects_root) / CI_ARTIFACTS_DIR / project / ref


def archived_note_path(projects_root: Path, project: str, name: str) -> Path:
    """Get the path a removed worktree's note is archived to."""
    return Path(projects_root) / ARCHIVE_DIR / f"{project}-{note_file_name(name)}"


def obsidian_note_url(project: str, name: str, vault_name: str | None = None) -> str:
    """
    Get an obsidian:// URL that opens a worktree note.

    Example:
        obsidian_note_url("galaxy", "1234", "ghwt")
        -> "obsidian://open?vault=ghwt&file=projects/galaxy/worktrees/1234.md"
    """
    vault = quote(vault_name or NOTES_DIR, safe="")
    file_ref = quote(
        f"{NOTES_DIR}/{project}/{NOTE_WORKTREES_DIR}/{note_file_name(name)}", safe="/"
    )
    return f"obsidian://open?vault={vault}&file={file_ref}"


@dataclass(frozen=True)
class ProjectPaths:
    """Container for all expanded roots derived from the configuration."""

    config: Config
    projects_root: Path
    repos_root: Path
    worktrees_root: Path
    vault_root: Path

    @classmethod
    def load(cls, config: Config) -> "ProjectPaths":
        projects_root = config.expanded_projects_root
        return cls(
            config=config,
            projects_root=projects_root,
            repos_root=projects_root / config.repositories_dir,
            worktrees_root=projects_root / config.worktrees_dir,
            vault_root=config.expanded_vault_path,
        )

    @property
    def ci_artifacts_root(self) -> Path:
        return self.projects_root / CI_ARTIFACTS_DIR

    @property
    def ci_artifacts_config_root(self) -> Path:
        return self.projects_root / CI_ARTIFACTS_CONFIG_DIR

    @property
    def session_config_root(self) -> Path:
        return self.projects_root / SESSION_CONFIG_DIR

    def repository(self, project: str) -> Path:
        return repository_path(self.projects_root, self.config, project)

    def worktree(self, project: str, identity: Identity) -> Path:
        return worktree_path(self.projects_root, self.config, project, identity)

    def note(self, project: str, identity: Identity) -> Path:
        return note_path(self.vault_root, project, identity.name)

    def ci_artifacts(self, project: str, identity: Identity) -> Path:
        return ci_artifacts_path(self.projects_root, project, identity)
