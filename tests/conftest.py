"""
Pytest configuration and shared fixtures for ghwt tests.
"""

import subprocess
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest

from ghwt.config import Config
from ghwt.models.identity import BranchIdentity, PullRequestIdentity
from ghwt.models.metadata import GitFacts, WorktreeMetadata


def init_git_repo(repo_path: Path, branch: str = "main") -> Path:
    """Initialise a git repository with one commit on ``branch``."""
    repo_path.mkdir(parents=True, exist_ok=True)

    for args in (
        ["git", "init"],
        ["git", "symbolic-ref", "HEAD", f"refs/heads/{branch}"],
        ["git", "config", "user.email", "test@example.com"],
        ["git", "config", "user.name", "Test User"],
    ):
        subprocess.run(args, cwd=repo_path, capture_output=True, check=True)

    (repo_path / "README.md").write_text("# Test Repository\n")

    subprocess.run(["git", "add", "."], cwd=repo_path, capture_output=True, check=True)
    subprocess.run(
        ["git", "commit", "-m", "Initial commit"],
        cwd=repo_path,
        capture_output=True,
        check=True,
    )
    return repo_path


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def temp_dir(temp_directory: Path) -> Path:
    """Alias for temp_directory for backward compatibility."""
    return temp_directory


@pytest.fixture
def git_repo(temp_directory: Path) -> Path:
    """Create a temporary git repository for tests."""
    return init_git_repo(temp_directory / "test-repo")


@pytest.fixture
def config(temp_directory: Path) -> Config:
    """Configuration rooted in the temporary directory."""
    return Config(
        projects_root=str(temp_directory / "projects"),
        vault_path=str(temp_directory / "vault"),
        default_base_branch="main",
    )


@pytest.fixture
def project_repo(config: Config) -> Path:
    """Repository clone of project ``galaxy`` under the configured projects root."""
    repo_path = config.expanded_projects_root / config.repositories_dir / "galaxy"
    return init_git_repo(repo_path)


@pytest.fixture
def branch_metadata() -> WorktreeMetadata:
    """Metadata of a branch worktree with a git group."""
    metadata = WorktreeMetadata.new(
        "galaxy", BranchIdentity("fix/bug-123"), created=date(2024, 1, 15)
    )
    return metadata.replace_group(
        "git",
        GitFacts(
            repo_url="git@github.com:acme/galaxy.git",
            worktree_path="/projects/worktrees/galaxy/branch/fix/bug-123",
            base_branch="main",
            commits_ahead=2,
            commits_behind=0,
            has_uncommitted_changes=False,
            last_commit_date=datetime(2024, 1, 14, 10, 0, tzinfo=timezone.utc),
        ),
    )


@pytest.fixture
def pr_metadata() -> WorktreeMetadata:
    """Metadata of a pull-request worktree with manual fields only."""
    return WorktreeMetadata.new(
        "galaxy",
        PullRequestIdentity("1234"),
        branch="add-widgets",
        pr_url="https://github.com/acme/galaxy/pull/1234",
        created=date(2024, 1, 15),
    )


# Mock fixtures for tmux


@pytest.fixture
def mock_libtmux_server() -> MagicMock:
    """Create a mock libtmux server."""
    server = MagicMock()
    server.has_session.return_value = False
    server.sessions = []
    return server


@pytest.fixture
def mock_libtmux_session() -> MagicMock:
    """Create a mock libtmux session."""
    session = MagicMock()
    session.name = "galaxy-fix-bug-123"
    session.id = "$1"
    session.session_attached = "0"

    window = MagicMock()
    window.panes = [MagicMock()]
    window.panes[0].pane_current_path = "/tmp/test"
    session.windows = [window]
    session.active_window = window

    return session


@pytest.fixture
def mock_subprocess_run():
    """Fixture to mock subprocess.run for external commands."""
    with patch("subprocess.run") as mock_run:
        mock_result = MagicMock()
        mock_result.returncode = 0
        mock_result.stdout = ""
        mock_result.stderr = ""
        mock_run.return_value = mock_result
        yield mock_run
