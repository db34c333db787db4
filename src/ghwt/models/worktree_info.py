"""Pydantic models for worktree information."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ghwt.models.identity import Identity, IdentityKind, identity_from_parts
from ghwt.models.metadata import WorktreeMetadata


class WorktreeEntry(BaseModel):
    """A worktree found under the worktrees root."""

    model_config = ConfigDict(frozen=True)

    project: str = Field(description="Project the worktree belongs to")
    kind: IdentityKind = Field(description="Whether the worktree tracks a branch or a PR")
    name: str = Field(description="Branch name or PR number, slashes preserved")
    path: Path = Field(description="Absolute path to the worktree directory")

    @property
    def identity(self) -> Identity:
        return identity_from_parts(self.kind, self.name)

    @property
    def display_name(self) -> str:
        """Get a display label such as ``galaxy: pr/1234``."""
        return f"{self.project}: {self.kind.value}/{self.name}"

    @property
    def short_path(self) -> str:
        """Get a shortened display path."""
        return f"~/{self.path.relative_to(Path.home())}" if self.path.is_relative_to(
            Path.home()
        ) else str(self.path)


class WorktreeCreateResult(BaseModel):
    """Result of creating a new worktree."""

    project: str
    kind: IdentityKind
    name: str
    branch: str = Field(description="Git branch checked out in the worktree")
    worktree_path: Path
    note_path: Path
    repository_path: Path
    base_branch: Optional[str] = Field(
        default=None, description="Base branch the worktree was created from"
    )
    created_worktree: bool = Field(
        default=True, description="False when an existing worktree was reused"
    )
    created_branch: bool = Field(
        default=False, description="Whether a new branch was created"
    )
    pr_url: Optional[str] = Field(default=None, description="Review URL for PR worktrees")
    metadata: WorktreeMetadata


class WorktreeRemoveResult(BaseModel):
    """Result of removing a worktree."""

    worktree_path: Path
    removed_worktree: bool = False
    killed_session: Optional[str] = None
    archived_note: Optional[Path] = None
    pruned: bool = False


class CloneResult(BaseModel):
    """Result of cloning a project repository."""

    project: str
    repository_path: Path
    origin_url: str = Field(description="URL cloned as origin, the user's fork when one was found")
    upstream_url: Optional[str] = None
    fork_detected: bool = False
    push_disabled: bool = False
