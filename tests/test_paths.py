"""Tests for worktree, note and artifact path derivation."""

from pathlib import Path

import pytest

from ghwt.config import Config
from ghwt.core.paths import (
    ProjectPaths,
    archived_note_path,
    ci_artifacts_path,
    note_path,
    obsidian_note_url,
    repository_path,
    session_name,
    worktree_path,
)
from ghwt.models.identity import BranchIdentity, PullRequestIdentity


@pytest.fixture
def root() -> Path:
    return Path("/home/dev/projects")


@pytest.fixture
def cfg() -> Config:
    return Config(worktrees_dir="worktrees")


class TestWorktreePath:
    """Tests for worktree_path."""

    def test_branch_worktree(self, root, cfg):
        path = worktree_path(root, cfg, "galaxy", BranchIdentity("cool-feature"))

        assert path == root / "worktrees" / "galaxy" / "branch" / "cool-feature"

    def test_pull_request_worktree(self, root, cfg):
        path = worktree_path(root, cfg, "galaxy", PullRequestIdentity("1234"))

        assert path == root / "worktrees" / "galaxy" / "pr" / "1234"

    def test_slashes_become_directories(self, root, cfg):
        """Test nested branch names produce nested directories, not one escaped segment."""
        path = worktree_path(root, cfg, "galaxy", BranchIdentity("fix/bug-123"))

        assert path == root / "worktrees" / "galaxy" / "branch" / "fix" / "bug-123"
        assert path.parts[-3:] == ("branch", "fix", "bug-123")

    def test_custom_worktrees_dir(self, root):
        path = worktree_path(root, Config(worktrees_dir="wt"), "galaxy", BranchIdentity("x"))

        assert path == root / "wt" / "galaxy" / "branch" / "x"

    def test_idempotent(self, root, cfg):
        identity = BranchIdentity("fix/bug-123")

        first = worktree_path(root, cfg, "galaxy", identity)
        second = worktree_path(root, cfg, "galaxy", identity)

        assert first == second


class TestNotePath:
    """Tests for note_path."""

    def test_note_path(self):
        vault = Path("/vault")

        assert note_path(vault, "galaxy", "cool-feature") == Path(
            "/vault/projects/galaxy/worktrees/cool-feature.md"
        )

    def test_note_path_is_kind_agnostic(self):
        """Test a branch and a PR with the same name share a note path."""
        paths = ProjectPaths.load(Config(vault_path="/vault"))

        assert paths.note("galaxy", BranchIdentity("1234")) == paths.note(
            "galaxy", PullRequestIdentity("1234")
        )

    def test_nested_branch_note_is_flat(self):
        path = note_path(Path("/vault"), "galaxy", "fix/bug-123")

        assert path.name == "fix-bug-123.md"
        assert path.parent == Path("/vault/projects/galaxy/worktrees")


class TestSupplementaryPaths:
    """Tests for repository, session, artifact and archive paths."""

    def test_repository_path(self, root, cfg):
        assert repository_path(root, cfg, "galaxy") == root / "repositories" / "galaxy"

    def test_session_name(self):
        assert session_name("galaxy", "fix/bug-123") == "galaxy-fix-bug-123"
        assert session_name("galaxy", "1234") == "galaxy-1234"

    @pytest.mark.parametrize(
        "project,name,expected",
        [
            ("galaxy", "release-1.2", "galaxy-release-1-2"),
            ("galaxy", "v1.2/hotfix", "galaxy-v1-2-hotfix"),
            ("site.io", "main", "site-io-main"),
            ("galaxy", "a:b", "galaxy-a-b"),
        ],
    )
    def test_session_name_replaces_tmux_separators(self, project, name, expected):
        """Test periods and colons never reach a tmux target."""
        assert session_name(project, name) == expected

    def test_ci_artifacts_path(self, root):
        path = ci_artifacts_path(root, "galaxy", PullRequestIdentity("1234"))

        assert path == root / "ci-artifacts" / "galaxy" / "pr-1234"

    def test_ci_artifacts_path_flattens_branch(self, root):
        path = ci_artifacts_path(root, "galaxy", BranchIdentity("fix/bug-1"))

        assert path == root / "ci-artifacts" / "galaxy" / "branch-fix-bug-1"

    def test_archived_note_path(self, root):
        assert archived_note_path(root, "galaxy", "fix/x") == root / "old" / "galaxy-fix-x.md"

    def test_obsidian_note_url(self):
        url = obsidian_note_url("galaxy", "1234", "ghwt")

        assert url == "obsidian://open?vault=ghwt&file=projects/galaxy/worktrees/1234.md"

    def test_obsidian_note_url_escapes_vault(self):
        url = obsidian_note_url("galaxy", "x", "My Vault")

        assert "vault=My%20Vault" in url


class TestProjectPaths:
    """Tests for ProjectPaths."""

    def test_load_expands_home(self):
        paths = ProjectPaths.load(Config(projects_root="~/p", vault_path="~/v"))

        assert paths.projects_root == Path.home() / "p"
        assert paths.repos_root == Path.home() / "p" / "repositories"
        assert paths.worktrees_root == Path.home() / "p" / "worktrees"
        assert paths.vault_root == Path.home() / "v"
        assert paths.session_config_root == Path.home() / "p" / "terminal-session-config"
        assert paths.ci_artifacts_config_root == Path.home() / "p" / "ci-artifacts-config"

    def test_methods_match_functions(self):
        config = Config(projects_root="/p", vault_path="/v")
        paths = ProjectPaths.load(config)
        identity = BranchIdentity("a/b")

        assert paths.worktree("galaxy", identity) == worktree_path(Path("/p"), config, "galaxy", identity)
        assert paths.note("galaxy", identity) == note_path(Path("/v"), "galaxy", "a/b")
        assert paths.ci_artifacts("galaxy", identity) == ci_artifacts_path(Path("/p"), "galaxy", identity)

    def test_no_filesystem_access(self, temp_directory):
        """Test resolving paths creates nothing."""
        config = Config(projects_root=str(temp_directory / "p"), vault_path=str(temp_directory / "v"))
        paths = ProjectPaths.load(config)
        paths.worktree("galaxy", BranchIdentity("x"))
        paths.note("galaxy", BranchIdentity("x"))

        assert list(temp_directory.iterdir()) == []
