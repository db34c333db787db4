"""
Sync service for refreshing worktree notes.

This module provides functionality to:
- Refresh the git, review and CI metadata groups of a single note
- Sync every note, recreating notes for worktrees that have none
- Recreate missing tmux sessions
- Download or delete the CI artifacts recorded in a note
"""

import logging
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Collection, List, Optional

from git.exc import GitCommandError
from pydantic import BaseModel, ValidationError

from ghwt.config import Config
from ghwt.core.ci_artifacts import (
    CIArtifactsError,
    collect_ci_facts,
    fetch_ci_artifacts,
    find_ci_config_file,
    needs_full_fetch,
    should_fetch_artifacts,
)
from ghwt.core.git import GitError, collect_git_facts, head_sha, open_repo
from ghwt.core.github import GitHubError, get_branch_ci_status, get_pr_info, review_repo_slug
from ghwt.core.notes import NoteError, create_worktree_note, read_note, update_note_metadata
from ghwt.core.paths import ProjectPaths, ci_artifacts_path, note_dir, session_name
from ghwt.core.tmux_manager import TmuxError, TmuxManager, launch_session
from ghwt.core.worktree_list import list_worktrees
from ghwt.models.identity import BranchIdentity, Identity
from ghwt.models.metadata import (
    CIFacts,
    GitFacts,
    IncompleteMetadataGroup,
    MetadataGroup,
    ReviewFacts,
    WorktreeMetadata,
)
from ghwt.models.worktree_info import WorktreeEntry
from ghwt.utils.io import exclusive_lock

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    """Status of a sync operation."""

    SYNCED = "synced"
    PARTIAL = "partial"
    MISSING_WORKTREE = "missing_worktree"
    RECREATED = "recreated"
    CLEANED = "cleaned"
    SKIPPED = "skipped"
    ERROR = "error"


class WorktreeSyncResult(BaseModel):
    """Result of syncing a single note."""

    note_path: str
    project: Optional[str] = None
    name: Optional[str] = None
    status: SyncStatus
    message: str
    synced_groups: List[MetadataGroup] = []
    failed_groups: List[MetadataGroup] = []


class SyncReport(BaseModel):
    """Report generated after sync operation."""

    timestamp: datetime
    notes_synced: int = 0
    successful: int = 0
    partial: int = 0
    failed: int = 0
    missing_worktrees: int = 0
    recreated_notes: int = 0
    recreated_sessions: List[str] = []
    results: List[WorktreeSyncResult] = []


@dataclass
class SyncConfig:
    """Configuration for sync operations."""

    fetch_ci_artifacts: bool = True
    max_workers: int = 3
    artifacts_timeout_seconds: int = 600


class SyncService:
    """
    Service for refreshing the synced metadata groups of worktree notes.

    For each note the git, review and CI sources are queried concurrently.
    Each group is replaced as a whole when its source succeeds and left as
    it was when the source fails. Manual fields are never written.
    """

    def __init__(
        self,
        config: Config,
        sync_config: Optional[SyncConfig] = None,
        tmux_manager: Optional[TmuxManager] = None,
    ):
        self.config = config
        self.sync_config = sync_config or SyncConfig()
        self.paths = ProjectPaths.load(config)
        self._tmux = tmux_manager

    @property
    def tmux(self) -> TmuxManager:
        if self._tmux is None:
            self._tmux = TmuxManager(self.config.terminal_ui)
        return self._tmux

    def _locate_worktree(self, metadata: WorktreeMetadata) -> Optional[Path]:
        """
        Find the worktree a note describes.

        A PR URL may have been added by hand to a branch worktree's note, so
        the branch layout is tried when the PR layout doesn't exist.
        """
        project = metadata.manual.project
        candidates = [self.paths.worktree(project, metadata.identity)]
        if metadata.is_pull_request:
            candidates.append(self.paths.worktree(project, BranchIdentity(metadata.manual.branch)))

        for candidate in candidates:
            if candidate.is_dir():
                return candidate
        return None

    def _collect_git(self, metadata: WorktreeMetadata, worktree_path: Path) -> GitFacts:
        base_branch = (
            metadata.git.base_branch if metadata.git and metadata.git.base_branch
            else self.config.default_base_branch
        )
        return collect_git_facts(worktree_path, metadata.manual.branch, base_branch)

    def _collect_review(self, metadata: WorktreeMetadata, worktree_path: Path) -> ReviewFacts:
        try:
            repo = open_repo(worktree_path)
            pr_info = get_pr_info(metadata.manual.pr_number, review_repo_slug(repo))
        except (GitError, GitHubError) as e:
            raise IncompleteMetadataGroup(MetadataGroup.REVIEW, str(e)) from e
        try:
            return pr_info.to_review_facts()
        except ValidationError as e:
            raise IncompleteMetadataGroup(
                MetadataGroup.REVIEW, f"unexpected PR data from GitHub: {e}"
            ) from e

    def _collect_ci(
        self, metadata: WorktreeMetadata, worktree_path: Path, force_fetch: bool = False
    ) -> CIFacts:
        now = datetime.now(timezone.utc)
        try:
            repo = open_repo(worktree_path)
            slug = review_repo_slug(repo)
            sha = head_sha(repo)
            if slug is None:
                raise IncompleteMetadataGroup(MetadataGroup.CI, "no GitHub remote configured")
            checks = get_branch_ci_status(slug, metadata.manual.branch)
        except (GitError, GitCommandError, GitHubError) as e:
            raise IncompleteMetadataGroup(MetadataGroup.CI, str(e)) from e

        if not metadata.is_pull_request:
            return CIFacts(ci_checks=checks, ci_last_synced=now, ci_head_sha=sha)

        repo_name = slug.split("/", 1)[1]
        artifacts_path = ci_artifacts_path(
            self.paths.projects_root, metadata.manual.project, metadata.identity
        )

        fetch_status = None
        artifacts_sha = metadata.ci.ci_head_sha if metadata.ci and metadata.ci.ci_head_sha else sha
        if force_fetch or (
            self.sync_config.fetch_ci_artifacts and should_fetch_artifacts(metadata.ci, checks.value)
        ):
            try:
                fetch_status = fetch_ci_artifacts(
                    metadata.manual.pr_number,
                    slug,
                    artifacts_path,
                    resume=not needs_full_fetch(metadata.ci, sha),
                    config_file=find_ci_config_file(self.paths.ci_artifacts_config_root, repo_name),
                    timeout=self.sync_config.artifacts_timeout_seconds,
                )
            except CIArtifactsError as e:
                raise IncompleteMetadataGroup(MetadataGroup.CI, str(e)) from e
            artifacts_sha = sha

        return collect_ci_facts(artifacts_path, artifacts_sha, checks, fetch_status, now)

    def _collectors(
        self, metadata: WorktreeMetadata, worktree_path: Path, force_ci_fetch: bool = False
    ) -> dict[MetadataGroup, Callable[[], object]]:
        collectors = {
            MetadataGroup.GIT: lambda: self._collect_git(metadata, worktree_path),
            MetadataGroup.CI: lambda: self._collect_ci(
                metadata, worktree_path, force_fetch=force_ci_fetch
            ),
        }
        if metadata.is_pull_request:
            collectors[MetadataGroup.REVIEW] = lambda: self._collect_review(metadata, worktree_path)
        return collectors

    def sync_note(
        self,
        note_path: Path,
        groups: Optional[Collection[MetadataGroup]] = None,
        force_ci_fetch: bool = False,
    ) -> WorktreeSyncResult:
        """
        Sync a single note with its worktree, review service and CI.

        Args:
            note_path: Path to the worktree note.
            groups: Only refresh these groups. Defaults to every synced group.
            force_ci_fetch: Download CI artifacts even if the last download
                is still current.

        Returns:
            WorktreeSyncResult with details of the operation
        """
        with exclusive_lock(note_path):
            try:
                metadata = read_note(note_path).metadata()
            except NoteError as e:
                return WorktreeSyncResult(
                    note_path=str(note_path),
                    status=SyncStatus.ERROR,
                    message=str(e),
                )

            project = metadata.manual.project
            name = metadata.identity.name
            worktree_path = self._locate_worktree(metadata)
            if worktree_path is None:
                return WorktreeSyncResult(
                    note_path=str(note_path),
                    project=project,
                    name=name,
                    status=SyncStatus.MISSING_WORKTREE,
                    message=f"Worktree not found for {project}/{name}",
                )

            collectors = self._collectors(metadata, worktree_path, force_ci_fetch)
            if groups is not None:
                collectors = {g: fn for g, fn in collectors.items() if g in groups}
            with ThreadPoolExecutor(max_workers=self.sync_config.max_workers) as pool:
                futures = {group: pool.submit(fn) for group, fn in collectors.items()}

            synced: list[MetadataGroup] = []
            failed: list[MetadataGroup] = []
            for group, future in futures.items():
                try:
                    metadata = metadata.replace_group(group, future.result())
                    synced.append(group)
                except IncompleteMetadataGroup as e:
                    logger.warning(f"{project}/{name}: {e}")
                    failed.append(group)
                except Exception as e:
                    logger.warning(
                        f"{project}/{name}: unexpected {group.value} failure: {e}", exc_info=True
                    )
                    failed.append(group)

            metadata = metadata.with_activity()
            update_note_metadata(note_path, metadata, self.config)

        if failed:
            status = SyncStatus.PARTIAL
            message = f"Kept previous {', '.join(g.value for g in failed)} metadata"
        else:
            status = SyncStatus.SYNCED
            message = "Synced"

        return WorktreeSyncResult(
            note_path=str(note_path),
            project=project,
            name=name,
            status=status,
            message=message,
            synced_groups=synced,
            failed_groups=failed,
        )

    def find_notes(self, project: Optional[str] = None) -> list[Path]:
        """Find worktree notes, optionally for a single project."""
        projects_dir = self.paths.vault_root / "projects"
        if project:
            project_dirs = [projects_dir / project]
        elif projects_dir.is_dir():
            project_dirs = sorted(p for p in projects_dir.iterdir() if p.is_dir())
        else:
            project_dirs = []

        notes: list[Path] = []
        for project_dir in project_dirs:
            worktree_notes = note_dir(self.paths.vault_root, project_dir.name)
            if worktree_notes.is_dir():
                notes.extend(sorted(worktree_notes.glob("*.md")))
        return notes

    def select_notes(
        self, project: Optional[str] = None, identity: Optional[Identity] = None
    ) -> list[Path]:
        """Find the notes of one worktree when ``identity`` is given, else of a project or all."""
        if project and identity is not None:
            note = self.paths.note(project, identity)
            return [note] if note.exists() else []
        return self.find_notes(project)

    def download_ci_artifacts(self, note_path: Path) -> WorktreeSyncResult:
        """
        Download CI artifacts for a PR note and refresh only its CI group.

        The download runs even when the recorded artifacts match the current
        commit. Branch notes are skipped.
        """
        try:
            metadata = read_note(note_path).metadata()
        except NoteError as e:
            return WorktreeSyncResult(note_path=str(note_path), status=SyncStatus.ERROR, message=str(e))

        if not metadata.is_pull_request:
            return WorktreeSyncResult(
                note_path=str(note_path),
                project=metadata.manual.project,
                name=metadata.identity.name,
                status=SyncStatus.SKIPPED,
                message="Not a pull request",
            )
        return self.sync_note(note_path, groups={MetadataGroup.CI}, force_ci_fetch=True)

    def clean_ci_artifacts(self, note_path: Path) -> WorktreeSyncResult:
        """
        Delete the CI artifacts recorded in a note and clear its CI group,
        so the next sync downloads them again.

        Only directories under ``<projects_root>/ci-artifacts`` are deleted.
        """
        with exclusive_lock(note_path):
            try:
                metadata = read_note(note_path).metadata()
            except NoteError as e:
                return WorktreeSyncResult(
                    note_path=str(note_path), status=SyncStatus.ERROR, message=str(e)
                )

            result = WorktreeSyncResult(
                note_path=str(note_path),
                project=metadata.manual.project,
                name=metadata.identity.name,
                status=SyncStatus.SKIPPED,
                message="No CI artifacts",
            )
            recorded = metadata.ci.ci_artifacts_path if metadata.ci else None
            if not recorded:
                return result

            artifacts = Path(recorded)
            root = self.paths.ci_artifacts_root.resolve()
            resolved = artifacts.resolve()
            if resolved == root or not resolved.is_relative_to(root):
                result.status = SyncStatus.ERROR
                result.message = f"Refusing to delete {artifacts}: outside {root}"
                return result
            if not artifacts.exists():
                result.message = f"Artifact path not found: {artifacts}"
                return result

            try:
                shutil.rmtree(artifacts)
            except OSError as e:
                result.status = SyncStatus.ERROR
                result.message = f"Failed to delete {artifacts}: {e}"
                return result

            metadata = metadata.replace_group(MetadataGroup.CI, None)
            update_note_metadata(note_path, metadata, self.config)

        logger.info(f"Deleted CI artifacts: {artifacts}")
        result.status = SyncStatus.CLEANED
        result.message = f"Deleted {artifacts}"
        return result

    def recreate_note(self, entry: WorktreeEntry) -> WorktreeSyncResult:
        """Write a fresh note for a worktree whose note is missing."""
        identity: Identity = entry.identity
        note = self.paths.note(entry.project, identity)

        try:
            repo = open_repo(entry.path)
            branch = repo.active_branch.name
        except (GitError, TypeError) as e:
            # TypeError: detached HEAD
            logger.debug(f"Could not read branch of {entry.path}: {e}")
            branch = identity.name

        metadata = WorktreeMetadata.new(entry.project, identity, branch=branch)
        try:
            metadata = metadata.replace_group(
                MetadataGroup.GIT,
                collect_git_facts(entry.path, branch, self.config.default_base_branch),
            )
        except IncompleteMetadataGroup as e:
            logger.warning(f"{entry.display_name}: {e}")

        with exclusive_lock(note):
            create_worktree_note(note, metadata.with_activity(), self.config)

        return WorktreeSyncResult(
            note_path=str(note),
            project=entry.project,
            name=identity.name,
            status=SyncStatus.RECREATED,
            message="Recreated missing note",
        )

    def recreate_session(self, entry: WorktreeEntry) -> Optional[str]:
        """Create the configured session for a worktree if it isn't running."""
        name = session_name(entry.project, entry.name)
        if self.tmux.session_exists(name):
            return None

        branch = entry.name
        try:
            branch = read_note(self.paths.note(entry.project, entry.identity)).metadata().manual.branch
        except NoteError as e:
            logger.debug(f"Using worktree name as branch for {entry.display_name}: {e}")

        info = launch_session(self.config, entry.project, branch, name, entry.path, self.tmux)
        return name if info else None

    def sync_all(self, project: Optional[str] = None, recreate_sessions: bool = False) -> SyncReport:
        """
        Sync every note, recreate notes for worktrees that have none and,
        optionally, recreate missing tmux sessions.

        Args:
            project: Only sync this project.
            recreate_sessions: Start sessions for worktrees without one.

        Returns:
            SyncReport with aggregate results
        """
        report = SyncReport(timestamp=datetime.now())

        for note in self.find_notes(project):
            try:
                result = self.sync_note(note)
            except Exception as e:
                logger.debug(f"Sync of {note} failed", exc_info=True)
                result = WorktreeSyncResult(
                    note_path=str(note),
                    status=SyncStatus.ERROR,
                    message=f"Sync failed: {e}",
                )
            report.results.append(result)
            report.notes_synced += 1

            if result.status == SyncStatus.SYNCED:
                report.successful += 1
            elif result.status == SyncStatus.PARTIAL:
                report.partial += 1
            elif result.status == SyncStatus.MISSING_WORKTREE:
                report.missing_worktrees += 1
            else:
                report.failed += 1

        for entry in list_worktrees(self.config, project):
            if not self.paths.note(entry.project, entry.identity).exists():
                report.results.append(self.recreate_note(entry))
                report.recreated_notes += 1

            if recreate_sessions:
                try:
                    name = self.recreate_session(entry)
                except TmuxError as e:
                    logger.warning(f"{entry.display_name}: {e}")
                    continue
                if name:
                    report.recreated_sessions.append(name)

        return report

    def watch(
        self,
        project: Optional[str] = None,
        recreate_sessions: bool = False,
        on_report: Optional[Callable[[SyncReport], None]] = None,
        iterations: Optional[int] = None,
    ) -> None:
        """
        Run ``sync_all`` every ``config.sync_interval`` seconds.

        Args:
            on_report: Called with each report.
            iterations: Stop after this many rounds. Runs forever when None.
        """
        interval = self.config.sync_interval or 300
        count = 0
        while iterations is None or count < iterations:
            report = self.sync_all(project, recreate_sessions)
            if on_report:
                on_report(report)
            count += 1
            if iterations is None or count < iterations:
                time.sleep(interval)
