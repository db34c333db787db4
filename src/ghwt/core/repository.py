"""Cloning project repositories into ``<projects_root>/repositories``."""

import logging
from typing import Optional

from ghwt.config import Config
from ghwt.core.git import GitError, add_remote, clone_repo, disable_push
from ghwt.core.github import find_user_fork, parse_repo_url
from ghwt.core.identity import InvalidProjectName, validate_project
from ghwt.core.paths import ProjectPaths
from ghwt.models.worktree_info import CloneResult

logger = logging.getLogger(__name__)


class CloneError(Exception):
    """Raised when a repository cannot be cloned."""


def project_name_from_url(url: str) -> str:
    """
    Get the project name a repository URL clones to: its repository name.

    Example:
        project_name_from_url("git@github.com:acme/galaxy.git") -> "galaxy"

    Raises:
        CloneError: If the URL has no ``owner/repo`` part or the name is not
            a valid project name.
    """
    slug = parse_repo_url(url)
    if slug is None:
        raise CloneError(f"Invalid repository URL: {url}")
    try:
        return validate_project(slug.repo)
    except InvalidProjectName as e:
        raise CloneError(str(e)) from e


def clone_project(
    config: Config,
    url: str,
    upstream: Optional[str] = None,
    push: bool = True,
    fork_check: bool = True,
) -> CloneResult:
    """
    Clone a repository as a new project.

    When ``fork_check`` is on and no upstream is given, the user's fork of
    ``url`` is cloned as ``origin`` instead, and ``url`` becomes ``upstream``.

    Args:
        config: Configuration providing the projects root.
        url: Repository to clone.
        upstream: URL to add and fetch as the ``upstream`` remote.
        push: Leave pushing to ``origin`` enabled.
        fork_check: Look for the user's fork first.

    Returns:
        CloneResult describing the new clone.

    Raises:
        CloneError: If the URL is invalid, the target exists or git fails.
    """
    project = project_name_from_url(url)
    target = ProjectPaths.load(config).repository(project)
    if target.exists():
        raise CloneError(f"Repository already exists: {target}")

    origin_url = url
    fork_detected = False
    if fork_check and not upstream:
        fork = find_user_fork(url)
        if fork:
            logger.info(f"Found fork {fork}, using it as origin")
            origin_url, upstream = fork, url
            fork_detected = True

    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        repo = clone_repo(origin_url, target)
        if upstream:
            add_remote(repo, "upstream", upstream)
        if not push:
            disable_push(repo)
    except GitError as e:
        raise CloneError(str(e)) from e

    return CloneResult(
        project=project,
        repository_path=target,
        origin_url=origin_url,
        upstream_url=upstream,
        fork_detected=fork_detected,
        push_disabled=not push,
    )
