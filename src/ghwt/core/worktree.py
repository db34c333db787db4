"""Worktree lifecycle: creating and removing worktrees with their notes."""

import logging
import shutil
from pathlib import Path
from typing import Optional

from git import Repo
from pydantic import ValidationError

from ghwt.config import Config
from ghwt.core.git import (
    GitError,
    add_worktree,
    branch_exists,
    collect_git_facts,
    fetch_all,
    fetch_pull_request,
    open_repo,
    prune_worktrees,
    ref_exists,
    remote_url,
    resolve_base_ref,
    suggest_branches,
)
from ghwt.core.github import GitHubError, PRInfo, get_pr_info, review_repo_slug
from ghwt.core.identity import classify, validate_project
from ghwt.core.notes import NoteError, create_worktree_note, read_note, update_note_metadata
from ghwt.core.paths import ProjectPaths, archived_note_path, session_name
from ghwt.core.tmux_manager import TmuxError, TmuxManager
from ghwt.models.identity import Identity, PullRequestIdentity
from ghwt.models.metadata import IncompleteMetadataGroup, MetadataGroup, WorktreeMetadata
from ghwt.models.worktree_info import WorktreeCreateResult, WorktreeRemoveResult
from ghwt.utils.io import exclusive_lock, lock_path_for

logger = logging.getLogger(__name__)


class WorktreeError(Exception):
    """Base exception for worktree operations."""


class RepositoryNotFoundError(WorktreeError):
    """Raised when a project has no repository clone."""


class PathCollision(WorktreeError):
    """Raised when the target worktree path already exists."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Worktree path already exists: {path}")


class BaseBranchNotFoundError(WorktreeError):
    """Raised when an explicitly requested base branch does not exist."""

    def __init__(self, base_branch: str, suggestions: Optional[list[str]] = None):
        self.base_branch = base_branch
        self.suggestions = suggestions or []
        message = f"Base branch '{base_branch}' not found."
        if self.suggestions:
            hints = "\n".join(f"  - {s}" for s in self.suggestions)
            message += f"\n\nDid you mean one of these?\n{hints}"
        super().__init__(message)


class WorktreeManager:
    """Creates and removes worktrees of the project repositories under ``projects_root``."""

    def __init__(self, config: Config, tmux_manager: Optional[TmuxManager] = None):
        self.config = config
        self.paths = ProjectPaths.load(config)
        self._tmux = tmux_manager

    @property
    def tmux(self) -> TmuxManager:
        if self._tmux is None:
            self._tmux = TmuxManager(self.config.terminal_ui)
        return self._tmux

    def _open_project_repo(self, project: str) -> Repo:
        repo_path = self.paths.repository(project)
        if not repo_path.is_dir():
            raise RepositoryNotFoundError(
                f"Repository not found: {repo_path}\n"
                f"Clone it into {self.paths.repos_root} first."
            )
        try:
            return open_repo(repo_path)
        except GitError as e:
            raise RepositoryNotFoundError(str(e)) from e

    def _resolve_base(
        self,
        repo: Repo,
        base_branch: Optional[str],
        pr_info: Optional[PRInfo],
    ) -> tuple[str, Optional[str]]:
        """
        Decide the base branch name and the ref new branches start from.

        Returns:
            Tuple of (base branch name, start ref or None for HEAD).

        Raises:
            BaseBranchNotFoundError: If an explicit base branch doesn't exist.
        """
        if base_branch:
            base_ref = resolve_base_ref(repo, base_branch)
            if base_ref is None:
                raise BaseBranchNotFoundError(base_branch, suggest_branches(repo, base_branch))
            return base_branch, base_ref

        name = (pr_info.base_ref_name if pr_info else None) or self.config.default_base_branch
        base_ref = resolve_base_ref(repo, name)
        if base_ref is None:
            logger.warning(f"Base branch '{name}' not found locally or on origin")
        return name, base_ref

    def _checkout(
        self,
        repo: Repo,
        path: Path,
        branch: str,
        base_ref: Optional[str],
        pr_info: Optional[PRInfo],
    ) -> bool:
        """
        Add the worktree, creating ``branch`` if needed.

        Returns:
            True if a new local branch was created.
        """
        if branch_exists(repo, branch):
            if base_ref:
                logger.info(f"Branch '{branch}' already exists, ignoring base branch")
            add_worktree(repo, path, branch)
            return False

        remote_branch = f"origin/{branch}"
        if ref_exists(repo, remote_branch):
            add_worktree(repo, path, branch, base=remote_branch, create_branch=True)
            return True

        if pr_info is not None:
            remote = "upstream" if remote_url(repo, "upstream") else "origin"
            fetch_pull_request(repo, pr_info.number, branch, remote)
            add_worktree(repo, path, branch)
            return True

        add_worktree(repo, path, branch, base=base_ref, create_branch=True)
        return True

    def _existing_metadata(self, note: Path) -> Optional[WorktreeMetadata]:
        if not note.exists():
            return None
        try:
            return read_note(note).metadata()
        except NoteError as e:
            logger.warning(f"Ignoring unreadable note {note}: {e}")
            return None

    def create(
        self,
        project: str,
        raw_identifier: str,
        base_branch: Optional[str] = None,
        fetch: bool = True,
        exist_ok: bool = False,
    ) -> WorktreeCreateResult:
        """
        Create a worktree for a branch or pull request, and its note.

        Args:
            project: Project whose repository clone the worktree is added to.
            raw_identifier: Branch name or PR number as typed by the user.
            base_branch: Branch to start new branches from.
            fetch: Fetch all remotes first.
            exist_ok: Reuse an existing worktree directory instead of failing.

        Returns:
            WorktreeCreateResult describing what was created.

        Raises:
            InvalidIdentifier: If the identifier is malformed.
            InvalidProjectName: If the project is not a single directory name.
            RepositoryNotFoundError: If the project has no repository.
            PathCollision: If the worktree path exists and ``exist_ok`` is False.
            WorktreeError: If the PR cannot be looked up or git fails.
        """
        validate_project(project)
        identity = classify(raw_identifier)
        repo = self._open_project_repo(project)

        if fetch:
            try:
                fetch_all(repo)
            except GitError as e:
                logger.warning(f"{e}")

        pr_info: Optional[PRInfo] = None
        if isinstance(identity, PullRequestIdentity):
            try:
                pr_info = get_pr_info(identity.number, review_repo_slug(repo))
            except GitHubError as e:
                raise WorktreeError(f"Failed to fetch PR #{identity.number}: {e}") from e
            branch = pr_info.head_ref_name
        else:
            branch = identity.name

        base_name, base_ref = self._resolve_base(repo, base_branch, pr_info)

        wt_path = self.paths.worktree(project, identity)
        note = self.paths.note(project, identity)

        created_worktree = created_branch = False
        if wt_path.exists():
            if not exist_ok:
                raise PathCollision(wt_path)
            logger.info(f"Reusing existing worktree: {wt_path}")
        else:
            try:
                created_branch = self._checkout(repo, wt_path, branch, base_ref, pr_info)
            except GitError as e:
                raise WorktreeError(str(e)) from e
            created_worktree = True

        existing = self._existing_metadata(note)
        if existing is not None:
            metadata = existing
        else:
            metadata = WorktreeMetadata.new(
                project, identity, branch=branch, pr_url=pr_info.url if pr_info else None
            )

        try:
            metadata = metadata.replace_group(
                MetadataGroup.GIT, collect_git_facts(wt_path, branch, base_name)
            )
        except IncompleteMetadataGroup as e:
            logger.warning(f"{e}")

        if pr_info is not None:
            try:
                metadata = metadata.replace_group(MetadataGroup.REVIEW, pr_info.to_review_facts())
            except ValidationError as e:
                logger.warning(f"Skipping review metadata for PR #{pr_info.number}: {e}")
        metadata = metadata.with_activity()

        if existing is not None:
            update_note_metadata(note, metadata, self.config)
        else:
            create_worktree_note(note, metadata, self.config)

        return WorktreeCreateResult(
            project=project,
            kind=identity.kind,
            name=identity.name,
            branch=branch,
            worktree_path=wt_path,
            note_path=note,
            repository_path=self.paths.repository(project),
            base_branch=base_name,
            created_worktree=created_worktree,
            created_branch=created_branch,
            pr_url=pr_info.url if pr_info else None,
            metadata=metadata,
        )

    def remove(self, project: str, raw_identifier: str) -> WorktreeRemoveResult:
        """
        Remove a worktree: kill its session, delete the directory, prune the
        repository and archive the note under ``<projects_root>/old``.

        Missing pieces are skipped, so removing a half-removed worktree
        finishes the job.

        Raises:
            InvalidIdentifier: If the identifier is malformed.
            InvalidProjectName: If the project is not a single directory name.
            WorktreeError: If the path resolves outside the project worktrees
                or the directory or note cannot be removed.
        """
        validate_project(project)
        identity = classify(raw_identifier)
        wt_path = self.paths.worktree(project, identity)
        self._check_inside_worktrees(project, wt_path)
        result = WorktreeRemoveResult(worktree_path=wt_path)

        name = session_name(project, identity.name)
        if self.tmux.session_exists(name):
            try:
                self.tmux.kill_session(name)
                result.killed_session = name
            except TmuxError as e:
                logger.warning(f"{e}")

        if wt_path.exists():
            try:
                shutil.rmtree(wt_path)
            except OSError as e:
                raise WorktreeError(f"Failed to delete worktree {wt_path}: {e}") from e
            result.removed_worktree = True
        else:
            logger.info(f"Worktree not found: {wt_path}")

        repo_path = self.paths.repository(project)
        if repo_path.is_dir():
            try:
                prune_worktrees(open_repo(repo_path))
                result.pruned = True
            except GitError as e:
                logger.warning(f"{e}")

        result.archived_note = self._archive_note(project, identity)
        return result

    def attach_pr(self, project: str, raw_identifier: str, pr_number: int) -> WorktreeMetadata:
        """
        Link a pull request to an existing branch worktree.

        The note gains the PR URL and number and a review group. It keeps its
        name and the worktree stays where it is; sync finds it through the
        branch layout.

        Raises:
            InvalidIdentifier: If the identifier is malformed.
            InvalidProjectName: If the project is not a single directory name.
            WorktreeError: If the worktree or note is missing, the identifier
                is already a PR, or the PR cannot be looked up.
        """
        validate_project(project)
        identity = classify(raw_identifier)
        if isinstance(identity, PullRequestIdentity):
            raise WorktreeError(f"'{raw_identifier}' is already a PR worktree")

        wt_path = self.paths.worktree(project, identity)
        note = self.paths.note(project, identity)
        if not wt_path.is_dir():
            raise WorktreeError(f"Worktree not found: {wt_path}")
        if not note.exists():
            raise WorktreeError(f"Note not found: {note}")

        try:
            pr_info = get_pr_info(pr_number, review_repo_slug(open_repo(wt_path)))
        except (GitError, GitHubError) as e:
            raise WorktreeError(f"Failed to fetch PR #{pr_number}: {e}") from e

        with exclusive_lock(note):
            try:
                metadata = read_note(note).metadata()
                manual = metadata.manual.model_copy(
                    update={"pr": pr_info.url, "pr_number": pr_info.number}
                )
                metadata = WorktreeMetadata(
                    manual=manual, git=metadata.git, ci=metadata.ci, activity=metadata.activity
                ).replace_group(MetadataGroup.REVIEW, pr_info.to_review_facts())
            except (NoteError, ValidationError) as e:
                raise WorktreeError(f"Failed to attach PR #{pr_number} to {note}: {e}") from e
            metadata = metadata.with_activity()
            update_note_metadata(note, metadata, self.config, manual_keys=("pr", "pr_number"))

        logger.info(f"Attached PR #{pr_info.number} to {project}/{identity.name}")
        return metadata

    def _check_inside_worktrees(self, project: str, wt_path: Path) -> None:
        """Refuse paths that resolve outside ``worktrees_root/<project>``, e.g. through a symlink."""
        project_root = (self.paths.worktrees_root / project).resolve()
        resolved = wt_path.resolve()
        if resolved == project_root or not resolved.is_relative_to(project_root):
            raise WorktreeError(
                f"Refusing to remove {wt_path}: it resolves to {resolved}, "
                f"outside {project_root}"
            )

    def _archive_note(self, project: str, identity: Identity) -> Optional[Path]:
        note = self.paths.note(project, identity)
        if not note.exists():
            logger.info(f"Note not found: {note}")
            return None

        archive = archived_note_path(self.paths.projects_root, project, identity.name)
        try:
            archive.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(note), str(archive))
        except OSError as e:
            raise WorktreeError(f"Failed to archive note {note}: {e}") from e
        lock_path_for(note).unlink(missing_ok=True)
        return archive
