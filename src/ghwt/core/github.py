"""
Review-service client backed by the GitHub CLI (``gh``).

Provides pull-request lookups and branch CI status. All calls go through
``gh`` with JSON output so authentication is whatever ``gh auth`` holds.
"""

import json
import logging
import re
import subprocess
from typing import Any, Optional

from git import Repo
from pydantic import BaseModel, Field

from ghwt.core.git import remote_url
from ghwt.models.metadata import CIChecks, ReviewFacts

logger = logging.getLogger(__name__)

_REPO_URL_PATTERN = re.compile(r"[:/]([^/:]+)/([^/]+?)(?:\.git)?/?$")

PR_VIEW_FIELDS = "number,state,statusCheckRollup,reviews,labels,updatedAt,url,headRefName,baseRefName"

_PENDING_CONCLUSIONS = {None, "", "pending", "queued", "in_progress"}
_FAILING_CONCLUSIONS = {"failure", "cancelled", "timed_out", "startup_failure"}


class GitHubError(Exception):
    """Raised when the GitHub CLI call fails or returns unexpected data."""


class RepoSlug(BaseModel):
    """Owner and name of a hosted repository."""

    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


class PRInfo(BaseModel):
    """Pull-request facts returned by ``gh pr view``."""

    number: int
    state: str
    checks: str = Field(default="unknown", description="passing/failing/pending/unknown")
    reviews: int = 0
    labels: list[str] = Field(default_factory=list)
    updated_at: Optional[str] = None
    url: str
    head_ref_name: str
    base_ref_name: Optional[str] = None

    def to_review_facts(self) -> ReviewFacts:
        return ReviewFacts(
            pr_state=self.state,
            pr_checks=self.checks,
            pr_reviews=self.reviews,
            pr_labels=frozenset(self.labels),
            pr_updated_at=self.updated_at,
        )


def parse_repo_url(url: str) -> Optional[RepoSlug]:
    """
    Extract owner and repository name from a git remote URL.

    Example:
        parse_repo_url("git@github.com:owner/repo.git") -> RepoSlug(owner="owner", repo="repo")
    """
    match = _REPO_URL_PATTERN.search(url.strip())
    if not match:
        return None
    return RepoSlug(owner=match.group(1), repo=match.group(2))


def format_repo_slug(url: str) -> Optional[str]:
    slug = parse_repo_url(url)
    return str(slug) if slug else None


def review_repo_slug(repo: Repo) -> Optional[str]:
    """
    Get the ``owner/repo`` PRs should be looked up in.

    Forks usually have an ``upstream`` remote pointing at the repository
    PRs are opened against; otherwise ``origin`` is used.
    """
    for remote in ("upstream", "origin"):
        url = remote_url(repo, remote)
        slug = format_repo_slug(url) if url else None
        if slug:
            return slug
    return None


def aggregate_check_conclusions(rollup: list[dict[str, Any]]) -> str:
    """Reduce a ``statusCheckRollup`` list to passing/failing/pending/unknown."""
    if not rollup:
        return "unknown"

    states = {
        str(check.get("conclusion") or check.get("state") or check.get("status") or "").upper()
        for check in rollup
    }
    if "FAILURE" in states or "ERROR" in states:
        return "failing"
    if states & {"PENDING", "IN_PROGRESS", "QUEUED", "EXPECTED", ""}:
        return "pending"
    return "passing"


def aggregate_run_conclusions(conclusions: list[Optional[str]]) -> CIChecks:
    """Reduce workflow run conclusions to a CIChecks value."""
    if not conclusions:
        return CIChecks.NONE
    if any(c in _PENDING_CONCLUSIONS for c in conclusions):
        return CIChecks.PENDING
    if any(c in _FAILING_CONCLUSIONS for c in conclusions):
        return CIChecks.FAILING
    return CIChecks.PASSING


def _run_gh(args: list[str], timeout: int = 30) -> str:
    try:
        result = subprocess.run(
            ["gh"] + args,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise GitHubError(f"gh {' '.join(args[:2])} failed: {e}") from e

    if result.returncode != 0:
        raise GitHubError(f"gh {' '.join(args[:2])} failed: {result.stderr.strip()}")

    return result.stdout


def get_pr_info(pr_number: int | str, repo: Optional[str] = None) -> PRInfo:
    """
    Fetch pull-request facts.

    Args:
        pr_number: Pull request number.
        repo: Optional ``owner/repo``; defaults to the repository gh infers.

    Raises:
        GitHubError: If gh fails or returns malformed JSON.
    """
    args = ["pr", "view", str(pr_number), "--json", PR_VIEW_FIELDS]
    if repo:
        args.extend(["--repo", repo])

    output = _run_gh(args)
    try:
        data = json.loads(output)
        return PRInfo(
            number=data["number"],
            state=data["state"],
            checks=aggregate_check_conclusions(data.get("statusCheckRollup") or []),
            reviews=len(data.get("reviews") or []),
            labels=[label["name"] for label in data.get("labels") or []],
            updated_at=data.get("updatedAt"),
            url=data["url"],
            head_ref_name=data["headRefName"],
            base_ref_name=data.get("baseRefName"),
        )
    except (ValueError, KeyError, TypeError) as e:
        raise GitHubError(f"Unexpected PR data for #{pr_number}: {e}") from e


def get_current_user() -> str:
    """
    Get the login of the user ``gh`` is authenticated as.

    Raises:
        GitHubError: If gh fails or no user is logged in.
    """
    login = _run_gh(["api", "user", "--jq", ".login"]).strip()
    if not login:
        raise GitHubError("gh api user returned no login")
    return login


def find_user_fork(repo_url: str) -> Optional[str]:
    """
    Find the current user's copy of a repository.

    A repository of the same name owned by the user counts, whether it is
    a fork of ``repo_url`` or the user's own original.

    Returns:
        Clone URL of the user's repository, or None when there is none or
        the lookup fails.
    """
    slug = parse_repo_url(repo_url)
    if slug is None:
        logger.debug(f"Could not parse repository URL: {repo_url}")
        return None

    try:
        user = get_current_user()
        if user == slug.owner:
            return None
        output = _run_gh([
            "repo", "view", f"{user}/{slug.repo}", "--json", "nameWithOwner,isFork,parent",
        ])
        data = json.loads(output)
    except (GitHubError, ValueError) as e:
        logger.debug(f"Fork check failed: {e}")
        return None

    if not isinstance(data, dict):
        return None
    parent = data.get("parent") or {}
    is_fork_of_target = (
        data.get("isFork") and (parent.get("owner") or {}).get("login") == slug.owner
    )
    if is_fork_of_target or data.get("nameWithOwner") == f"{user}/{slug.repo}":
        return f"https://github.com/{user}/{slug.repo}.git"
    return None


def get_branch_ci_status(repo: str, branch: str) -> CIChecks:
    """
    Get the aggregate status of the latest workflow runs of a branch.

    Raises:
        GitHubError: If the runs cannot be queried.
    """
    output = _run_gh([
        "api",
        f"repos/{repo}/actions/runs?branch={branch}&per_page=10",
        "--jq",
        "[.workflow_runs[] | .conclusion]",
    ])
    try:
        conclusions = json.loads(output or "[]")
    except ValueError as e:
        raise GitHubError(f"Unexpected workflow run data for {branch}: {e}") from e

    return aggregate_run_conclusions(conclusions)
