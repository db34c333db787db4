"""
Classification of user-supplied worktree identifiers.

An identifier is either a pull-request number (digits only) or a branch
name. Identifiers that still carry one of the retired ``feature/``, ``bug/``
or ``pr/`` prefixes are rejected before the branch grammar is consulted.
"""

import re

from ghwt.models.identity import BranchIdentity, Identity, PullRequestIdentity

RETIRED_PREFIXES: frozenset[str] = frozenset({"feature", "bug", "pr"})

BRANCH_GRAMMAR = "[A-Za-z0-9_.-]+ segments separated by single '/'"

_PR_PATTERN = re.compile(r"[0-9]+")
_BRANCH_PATTERN = re.compile(r"[A-Za-z0-9_.\-]+(?:/[A-Za-z0-9_.\-]+)*")
_PROJECT_PATTERN = re.compile(r"[A-Za-z0-9_\-][A-Za-z0-9_.\-]*")


class InvalidIdentifier(ValueError):
    """Raised when an identifier is neither a PR number nor a valid branch name."""

    def __init__(self, raw: str, reason: str | None = None):
        self.raw = raw
        self.reason = reason or (
            f"Use a PR number (e.g. \"1234\") or a branch name made of {BRANCH_GRAMMAR} "
            f"(e.g. \"cool-feature\" or \"fix/bug-123\")."
        )
        super().__init__(f"Invalid branch name: \"{raw}\". {self.reason}")


class LegacyPrefixIdentifier(InvalidIdentifier):
    """Raised when an identifier uses a retired ``feature/``, ``bug/`` or ``pr/`` prefix."""

    def __init__(self, raw: str, prefix: str):
        self.prefix = prefix
        self.suggestion = raw[len(prefix) + 1:]
        super().__init__(
            raw,
            f"The \"{prefix}/\" prefix is no longer used. "
            f"Pass the branch name or PR number directly (e.g. \"{self.suggestion}\").",
        )


class InvalidProjectName(ValueError):
    """Raised when a project name cannot be used as a single directory name."""

    def __init__(self, project: str):
        self.project = project
        super().__init__(
            f"Invalid project name: \"{project}\". "
            f"Use letters, digits, '_', '-' and '.', not starting with '.'."
        )


def legacy_prefix(raw: str) -> str | None:
    """Return the retired prefix ``raw`` starts with, if any."""
    head, sep, _ = raw.partition("/")
    if sep and head in RETIRED_PREFIXES:
        return head
    return None


def validate_project(project: str) -> str:
    """
    Check that ``project`` names exactly one directory below the roots.

    Returns:
        The project name unchanged.

    Raises:
        InvalidProjectName: If the name is empty, contains a separator or
            starts with a dot.
    """
    if not _PROJECT_PATTERN.fullmatch(project):
        raise InvalidProjectName(project)
    return project


def classify(raw: str) -> Identity:
    """
    Classify a raw identifier as a pull request or a branch.

    Leading zeros of a PR number are dropped, so ``000123`` and ``123``
    name the same worktree.

    Args:
        raw: Identifier as typed by the user.

    Returns:
        PullRequestIdentity for all-digit input, BranchIdentity otherwise.

    Raises:
        LegacyPrefixIdentifier: If the input starts with a retired prefix.
        InvalidIdentifier: If the input matches neither shape.
    """
    prefix = legacy_prefix(raw)
    if prefix is not None:
        raise LegacyPrefixIdentifier(raw, prefix)

    if _PR_PATTERN.fullmatch(raw):
        number = int(raw)
        if number == 0:
            raise InvalidIdentifier(raw, "PR numbers start at 1.")
        return PullRequestIdentity(str(number))

    if _BRANCH_PATTERN.fullmatch(raw):
        if any(segment.startswith(".") for segment in raw.split("/")):
            raise InvalidIdentifier(
                raw, "Branch name segments must not start with '.' (this rules out '.' and '..')."
            )
        return BranchIdentity(raw)

    raise InvalidIdentifier(raw)
