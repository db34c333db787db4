"""Git operations used by worktree creation and metadata sync."""

import logging
from pathlib import Path
from typing import Optional

from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from ghwt.models.metadata import GitFacts, IncompleteMetadataGroup, MetadataGroup

logger = logging.getLogger(__name__)


class GitError(Exception):
    """Raised when a git operation fails."""


def open_repo(path: Path) -> Repo:
    """
    Open the repository containing ``path``.

    Raises:
        GitError: If the path does not exist or is not inside a git repository.
    """
    try:
        return Repo(path)
    except (InvalidGitRepositoryError, NoSuchPathError) as e:
        raise GitError(f"Not a git repository: {path}") from e


def remote_url(repo: Repo, remote: str = "origin") -> Optional[str]:
    """Get the URL of a remote, or None if the remote is not configured."""
    try:
        return repo.git.remote("get-url", remote).strip() or None
    except GitCommandError:
        return None


def last_commit_date(repo: Repo) -> str:
    """Get the committer date of HEAD in strict ISO 8601."""
    return repo.git.log("-1", "--format=%cI", "HEAD").strip()


def head_sha(repo: Repo) -> str:
    return repo.git.rev_parse("HEAD").strip()


def tracking_branch(repo: Repo, branch: str) -> Optional[str]:
    """Get the merge ref configured for ``branch``, if any."""
    try:
        return repo.git.config(f"branch.{branch}.merge").strip() or None
    except GitCommandError:
        return None


def has_uncommitted_changes(repo: Repo) -> bool:
    return bool(repo.git.status("--porcelain").strip())


def ref_exists(repo: Repo, ref: str) -> bool:
    """Check whether ``ref`` resolves to a commit."""
    try:
        repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}")
        return True
    except GitCommandError:
        return False


def branch_exists(repo: Repo, branch: str) -> bool:
    """Check if a local branch exists."""
    try:
        repo.git.show_ref("--verify", "--quiet", f"refs/heads/{branch}")
        return True
    except GitCommandError:
        return False


def resolve_base_ref(repo: Repo, base_branch: str) -> Optional[str]:
    """Prefer ``origin/<base>`` and fall back to the local branch."""
    for candidate in (f"origin/{base_branch}", base_branch):
        if ref_exists(repo, candidate):
            return candidate
    return None


def commits_ahead_behind(repo: Repo, branch: str, base_ref: str) -> tuple[int, int]:
    """
    Count commits of ``branch`` ahead of and behind ``base_ref``.

    Returns:
        Tuple of (ahead, behind).
    """
    output = repo.git.rev_list("--left-right", "--count", f"{base_ref}...{branch}")
    parts = output.strip().split()
    if len(parts) != 2:
        raise GitError(f"Unexpected rev-list output: {output!r}")
    behind, ahead = int(parts[0]), int(parts[1])
    return ahead, behind


def suggest_branches(repo: Repo, name: str, limit: int = 5) -> list[str]:
    """Get local and remote branch names containing ``name``, for typo hints."""
    try:
        output = repo.git.for_each_ref("--format=%(refname:short)", "refs/heads", "refs/remotes")
    except GitCommandError:
        return []
    needle = name.lower()
    matches = [ref for ref in output.splitlines() if needle in ref.lower() and not ref.endswith("/HEAD")]
    return matches[:limit]


def fetch_all(repo: Repo) -> None:
    """Fetch all remotes, pruning deleted refs."""
    try:
        repo.git.fetch("--all", "--prune")
    except GitCommandError as e:
        raise GitError(f"Failed to fetch remote refs: {e.stderr}") from e


def add_worktree(
    repo: Repo,
    path: Path,
    branch: str,
    base: Optional[str] = None,
    create_branch: bool = False,
) -> None:
    """
    Add a worktree at ``path``.

    Args:
        repo: Repository to add the worktree to.
        path: Target directory. Its parent is created if needed.
        branch: Branch to check out.
        base: Start point when ``create_branch`` is set.
        create_branch: Create ``branch`` instead of checking out an existing one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    if create_branch:
        args = ["add", "-b", branch, str(path)]
        if base and base != branch:
            args.append(base)
    else:
        args = ["add", str(path), branch]

    try:
        repo.git.worktree(*args)
    except GitCommandError as e:
        raise GitError(f"Failed to create worktree: {e.stderr}") from e


def fetch_pull_request(repo: Repo, number: int, branch: str, remote: str = "origin") -> None:
    """
    Fetch a pull request's head into local ``branch``.

    Works for PRs opened from forks, whose head branch is not on ``remote``.
    """
    try:
        repo.git.fetch(remote, f"pull/{number}/head:{branch}")
    except GitCommandError as e:
        raise GitError(f"Failed to fetch PR #{number} from {remote}: {e.stderr}") from e


def clone_repo(url: str, target: Path) -> Repo:
    """
    Clone ``url`` into ``target``.

    Raises:
        GitError: If the clone fails.
    """
    try:
        return Repo.clone_from(url, str(target))
    except GitCommandError as e:
        raise GitError(f"Failed to clone {url}: {e.stderr}") from e


def add_remote(repo: Repo, name: str, url: str, fetch: bool = True) -> None:
    """Add a remote and optionally fetch it."""
    try:
        repo.git.remote("add", name, url)
        if fetch:
            repo.git.fetch(name)
    except GitCommandError as e:
        raise GitError(f"Failed to add remote '{name}' ({url}): {e.stderr}") from e


def disable_push(repo: Repo, remote: str = "origin") -> None:
    """Point the push URL of ``remote`` at a non-existent target."""
    try:
        repo.git.remote("set-url", "--push", remote, "no-push")
    except GitCommandError as e:
        raise GitError(f"Failed to disable push to '{remote}': {e.stderr}") from e


def prune_worktrees(repo: Repo) -> None:
    try:
        repo.git.worktree("prune")
    except GitCommandError as e:
        raise GitError(f"Failed to prune worktrees: {e.stderr}") from e


def collect_git_facts(worktree_path: Path, branch: str, base_branch: str) -> GitFacts:
    """
    Read the git metadata group for a worktree.

    Args:
        worktree_path: Path to the worktree.
        branch: Branch checked out in the worktree.
        base_branch: Branch ahead/behind counts are measured against.

    Returns:
        A fully populated GitFacts. Fields git cannot answer (no origin, no
        tracking branch, no base ref) are left unset.

    Raises:
        IncompleteMetadataGroup: If git fails partway through.
    """
    try:
        repo = open_repo(worktree_path)
        base_ref = resolve_base_ref(repo, base_branch)
        ahead = behind = None
        if base_ref is not None:
            ahead, behind = commits_ahead_behind(repo, branch, base_ref)
        else:
            logger.debug(f"Base branch '{base_branch}' not found for {worktree_path}")

        return GitFacts(
            repo_url=remote_url(repo),
            worktree_path=str(worktree_path),
            base_branch=base_branch,
            commits_ahead=ahead,
            commits_behind=behind,
            has_uncommitted_changes=has_uncommitted_changes(repo),
            last_commit_date=last_commit_date(repo),
            tracking_branch=tracking_branch(repo, branch),
        )
    except (GitError, GitCommandError) as e:
        raise IncompleteMetadataGroup(MetadataGroup.GIT, str(e)) from e
