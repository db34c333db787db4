"""Worktree identity: a branch name or a pull-request number."""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union


class IdentityKind(str, Enum):
    """Kind of ref a worktree tracks. Also the directory level under a project."""

    BRANCH = "branch"
    PR = "pr"


@dataclass(frozen=True)
class BranchIdentity:
    """A worktree checked out at a named branch."""

    name: str

    kind: ClassVar[IdentityKind] = IdentityKind.BRANCH

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PullRequestIdentity:
    """A worktree checked out at a pull request's head branch."""

    name: str

    kind: ClassVar[IdentityKind] = IdentityKind.PR

    @property
    def number(self) -> int:
        return int(self.name)

    def __str__(self) -> str:
        return self.name


Identity = Union[BranchIdentity, PullRequestIdentity]


def identity_from_parts(kind: IdentityKind | str, name: str) -> Identity:
    """Rebuild an identity from a stored (kind, name) pair."""
    kind = IdentityKind(kind)
    if kind is IdentityKind.PR:
        return PullRequestIdentity(name)
    return BranchIdentity(name)
