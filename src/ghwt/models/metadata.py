"""
Pydantic models for worktree metadata.

A worktree's tracked state is split by provenance into groups:

- git: facts read from the worktree's repository
- review: pull-request facts from the review service (PR worktrees only)
- ci: CI check and artifact facts
- activity: values derived from the other groups
- manual: fields set at creation time and edited by hand

Every group except ``manual`` is optional and is replaced as a whole when its
source is synced. Inside a group, a missing field means the value could not
be determined, not that it is zero or false.
"""

import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from ghwt.models.identity import BranchIdentity, Identity, PullRequestIdentity

_GIT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"
_PR_URL_NUMBER = re.compile(r"/(\d+)/?$")


class WorkflowStatus(str, Enum):
    """Manually maintained workflow status of a worktree."""

    DRAFT = "draft"
    IN_PROGRESS = "in-progress"
    TESTING = "testing"
    REVIEW = "review"
    BLOCKED = "blocked"
    MERGED = "merged"


class CIChecks(str, Enum):
    """Aggregate CI check status."""

    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"
    NONE = "none"


class CIArtifactStatus(str, Enum):
    """Completeness of downloaded CI artifacts."""

    COMPLETE = "complete"
    PARTIAL = "partial"
    INCOMPLETE = "incomplete"


class MetadataGroup(str, Enum):
    """Provenance groups of worktree metadata."""

    GIT = "git"
    REVIEW = "review"
    CI = "ci"
    ACTIVITY = "activity"
    MANUAL = "manual"


class IncompleteMetadataGroup(Exception):
    """Raised when a sync source returned only part of a metadata group."""

    def __init__(self, group: MetadataGroup | str, reason: str):
        self.group = MetadataGroup(group)
        self.reason = reason
        super().__init__(f"Incomplete {self.group.value} metadata: {reason}")


def _coerce_timestamp(value: Any) -> Any:
    """Accept ``git log --format=%ci`` style timestamps written by older notes."""
    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), _GIT_DATE_FORMAT)
        except ValueError:
            return value
    return value


Timestamp = Annotated[datetime, BeforeValidator(_coerce_timestamp)]


class _FactGroup(BaseModel):
    """Base class for a group of optional, independently synced fields."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        return tuple(cls.model_fields)

    def to_frontmatter(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class GitFacts(_FactGroup):
    """Facts read from git for one worktree."""

    repo_url: Optional[str] = Field(default=None, description="Remote URL of origin")
    worktree_path: Optional[str] = Field(default=None, description="Absolute path to the worktree")
    base_branch: Optional[str] = Field(default=None, description="Base branch name")
    commits_ahead: Optional[int] = Field(default=None, ge=0, description="Commits ahead of base")
    commits_behind: Optional[int] = Field(default=None, ge=0, description="Commits behind base")
    has_uncommitted_changes: Optional[bool] = Field(default=None)
    last_commit_date: Optional[Timestamp] = Field(default=None)
    tracking_branch: Optional[str] = Field(default=None, description="Remote tracking ref")


class ReviewFacts(_FactGroup):
    """Pull-request facts from the review service."""

    pr_state: Optional[str] = Field(default=None, description="open/closed/merged")
    pr_checks: Optional[str] = Field(default=None, description="passing/failing/pending/unknown")
    pr_reviews: Optional[int] = Field(default=None, ge=0, description="Number of reviews")
    pr_labels: Optional[frozenset[str]] = Field(default=None, description="Label names")
    pr_updated_at: Optional[Timestamp] = Field(default=None)

    @field_serializer("pr_labels")
    def _sorted_labels(self, labels: Optional[frozenset[str]]) -> Optional[list[str]]:
        return sorted(labels) if labels is not None else None


class CIFacts(_FactGroup):
    """CI check status and downloaded artifact facts."""

    ci_checks: Optional[CIChecks] = Field(default=None)
    ci_status: Optional[CIArtifactStatus] = Field(default=None)
    ci_failed_tests: Optional[int] = Field(default=None, ge=0)
    ci_linter_errors: Optional[int] = Field(default=None, ge=0)
    ci_artifacts_path: Optional[str] = Field(default=None)
    ci_last_synced: Optional[Timestamp] = Field(default=None)
    ci_viewer_url: Optional[str] = Field(default=None)
    ci_head_sha: Optional[str] = Field(default=None, description="Commit the artifacts belong to")


class ActivityFacts(_FactGroup):
    """Values derived from the other groups on each sync."""

    days_since_activity: Optional[int] = Field(default=None, ge=0)
    last_synced: Optional[Timestamp] = Field(default=None)


class ManualFields(_FactGroup):
    """Fields set at creation time. Sync never writes these."""

    project: str = Field(..., min_length=1, description="Project name")
    branch: str = Field(..., min_length=1, description="Git branch checked out in the worktree")
    pr: Optional[str] = Field(default=None, description="Pull request URL")
    pr_number: Optional[int] = Field(default=None, ge=1, description="Pull request number")
    status: WorkflowStatus = Field(default=WorkflowStatus.IN_PROGRESS)
    created: date = Field(default_factory=date.today)

    @model_validator(mode="before")
    @classmethod
    def _pr_number_from_url(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and data.get("pr_number") is None and data.get("pr"):
            match = _PR_URL_NUMBER.search(str(data["pr"]))
            if match:
                data = {**data, "pr_number": int(match.group(1))}
        return data

    @field_validator("created", mode="before")
    @classmethod
    def _date_only(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return value.split("T", 1)[0]
        return value


FactGroup = Union[GitFacts, ReviewFacts, CIFacts, ActivityFacts]

GROUP_MODELS: dict[MetadataGroup, type[_FactGroup]] = {
    MetadataGroup.MANUAL: ManualFields,
    MetadataGroup.GIT: GitFacts,
    MetadataGroup.REVIEW: ReviewFacts,
    MetadataGroup.CI: CIFacts,
    MetadataGroup.ACTIVITY: ActivityFacts,
}

SYNCED_GROUPS = (MetadataGroup.GIT, MetadataGroup.REVIEW, MetadataGroup.CI, MetadataGroup.ACTIVITY)

FRONTMATTER_KEYS: frozenset[str] = frozenset(
    key for model in GROUP_MODELS.values() for key in model.keys()
)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.astimezone()


class WorktreeMetadata(BaseModel):
    """The tracked state of one worktree, grouped by provenance."""

    model_config = ConfigDict(frozen=True)

    manual: ManualFields
    git: Optional[GitFacts] = None
    review: Optional[ReviewFacts] = None
    ci: Optional[CIFacts] = None
    activity: Optional[ActivityFacts] = None

    @model_validator(mode="after")
    def _review_only_for_pull_requests(self) -> "WorktreeMetadata":
        if self.review is not None and self.manual.pr_number is None:
            raise ValueError("review metadata is only allowed on pull-request worktrees")
        return self

    @classmethod
    def new(
        cls,
        project: str,
        identity: Identity,
        branch: str | None = None,
        pr_url: str | None = None,
        status: WorkflowStatus = WorkflowStatus.IN_PROGRESS,
        created: date | None = None,
    ) -> "WorktreeMetadata":
        """Create a record with only the manual fields populated."""
        pr_number = identity.number if isinstance(identity, PullRequestIdentity) else None
        manual = ManualFields(
            project=project,
            branch=branch or identity.name,
            pr=pr_url,
            pr_number=pr_number,
            status=status,
            created=created or date.today(),
        )
        return cls(manual=manual)

    @property
    def identity(self) -> Identity:
        if self.manual.pr_number is not None:
            return PullRequestIdentity(str(self.manual.pr_number))
        return BranchIdentity(self.manual.branch)

    @property
    def is_pull_request(self) -> bool:
        return self.manual.pr_number is not None

    def group(self, group: MetadataGroup | str) -> Optional[_FactGroup]:
        return getattr(self, MetadataGroup(group).value)

    def replace_group(
        self,
        group: MetadataGroup | str,
        value: Union[FactGroup, Mapping[str, Any], None],
    ) -> "WorktreeMetadata":
        """
        Return a copy with one synced group replaced as a whole.

        Args:
            group: Group to replace. ``manual`` is rejected.
            value: New group value, a mapping of its fields, or None to clear it.

        Returns:
            New WorktreeMetadata; all other groups are the same objects as before.

        Raises:
            ValueError: If asked to replace the manual group.
            TypeError: If ``value`` is a model of a different group.
        """
        group = MetadataGroup(group)
        if group is MetadataGroup.MANUAL:
            raise ValueError("manual fields are never replaced by a sync")

        model = GROUP_MODELS[group]
        if isinstance(value, Mapping):
            value = model.model_validate(dict(value))
        elif value is not None and not isinstance(value, model):
            raise TypeError(
                f"Expected {model.__name__} for group '{group.value}', "
                f"got {type(value).__name__}"
            )

        groups = {name.value: self.group(name) for name in GROUP_MODELS}
        groups[group.value] = value
        return WorktreeMetadata(**groups)

    def latest_activity(self) -> Optional[datetime]:
        """Most recent timestamp across the git, review and CI groups."""
        candidates = [
            self.git.last_commit_date if self.git else None,
            self.review.pr_updated_at if self.review else None,
            self.ci.ci_last_synced if self.ci else None,
        ]
        present = [_aware(ts) for ts in candidates if ts is not None]
        return max(present) if present else None

    def with_activity(self, now: datetime | None = None) -> "WorktreeMetadata":
        """Return a copy whose activity group is recomputed from the other groups."""
        now = _aware(now or datetime.now(timezone.utc))
        latest = self.latest_activity()
        days = max(0, (now - latest).days) if latest is not None else None
        return self.replace_group(
            MetadataGroup.ACTIVITY,
            ActivityFacts(days_since_activity=days, last_synced=now),
        )

    def to_frontmatter(self) -> dict[str, Any]:
        """Flatten to the key/value block stored atop a note. Absent fields are omitted."""
        data: dict[str, Any] = {}
        for group in GROUP_MODELS:
            value = self.group(group)
            if value is not None:
                data.update(value.to_frontmatter())
        return data

    @classmethod
    def from_frontmatter(cls, data: Mapping[str, Any]) -> "WorktreeMetadata":
        """
        Rebuild a record from a flat front-matter mapping.

        A group is present when at least one of its keys has a value.
        Keys that belong to no group are ignored.
        """
        groups: dict[str, Any] = {}
        for group, model in GROUP_MODELS.items():
            values = {key: data[key] for key in model.keys() if data.get(key) is not None}
            if group is MetadataGroup.MANUAL:
                groups[group.value] = model.model_validate(values)
            elif values:
                groups[group.value] = model.model_validate(values)
        return cls(**groups)
