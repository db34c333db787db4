"""
Data models for ghwt.

This package contains models for:
- Worktree identities (branch or pull request)
- Worktree metadata grouped by provenance
- Worktree listing and lifecycle results
"""

from ghwt.models.identity import (
    BranchIdentity,
    Identity,
    IdentityKind,
    PullRequestIdentity,
)
from ghwt.models.metadata import (
    ActivityFacts,
    CIArtifactStatus,
    CIChecks,
    CIFacts,
    GitFacts,
    IncompleteMetadataGroup,
    ManualFields,
    MetadataGroup,
    ReviewFacts,
    WorkflowStatus,
    WorktreeMetadata,
)
from ghwt.models.worktree_info import (
    WorktreeCreateResult,
    WorktreeEntry,
    WorktreeRemoveResult,
)

__all__ = [
    "BranchIdentity",
    "Identity",
    "IdentityKind",
    "PullRequestIdentity",
    "ActivityFacts",
    "CIArtifactStatus",
    "CIChecks",
    "CIFacts",
    "GitFacts",
    "IncompleteMetadataGroup",
    "ManualFields",
    "MetadataGroup",
    "ReviewFacts",
    "WorkflowStatus",
    "WorktreeMetadata",
    "WorktreeCreateResult",
    "WorktreeEntry",
    "WorktreeRemoveResult",
]
