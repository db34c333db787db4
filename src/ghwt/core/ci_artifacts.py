"""
CI artifact collection for the CI metadata group.

Artifacts are downloaded with the ``gh-ci-artifacts`` tool into
``<projects_root>/ci-artifacts/<project>/<kind>-<name>``, which writes a
``summary.json`` (and usually an ``index.html`` viewer) into a ``pr-*`` or
``branch-*`` subdirectory.
"""

import json
import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

from ghwt.models.metadata import (
    CIArtifactStatus,
    CIChecks,
    CIFacts,
    IncompleteMetadataGroup,
    MetadataGroup,
)

logger = logging.getLogger(__name__)

CI_CONFIG_FILENAMES = (".gh-ci-artifacts.yaml", ".gh-ci-artifacts.yml", ".gh-ci-artifacts.json")
SUMMARY_FILENAME = "summary.json"
VIEWER_FILENAME = "index.html"
TEST_ARTIFACT_TYPES = ("jest", "pytest", "playwright")

# Exit codes of gh-ci-artifacts
EXIT_STATUS = {
    0: CIArtifactStatus.COMPLETE,
    1: CIArtifactStatus.PARTIAL,
    2: CIArtifactStatus.INCOMPLETE,
}

_STATUS_RANK = {
    CIArtifactStatus.COMPLETE: 0,
    CIArtifactStatus.PARTIAL: 1,
    CIArtifactStatus.INCOMPLETE: 2,
}


class CIArtifactsError(Exception):
    """Raised when CI artifacts cannot be downloaded."""


class CISummary(BaseModel):
    """Counts extracted from a gh-ci-artifacts summary.json."""

    status: CIArtifactStatus
    failed_tests: int = 0
    linter_errors: int = 0


def find_ci_config_file(config_root: Path, repo_name: str) -> Optional[Path]:
    """Find a per-repository gh-ci-artifacts config under ``config_root/<repo>``."""
    for filename in CI_CONFIG_FILENAMES:
        candidate = config_root / repo_name / filename
        if candidate.exists():
            return candidate
    return None


def should_fetch_artifacts(ci: Optional[CIFacts], pr_checks: Optional[str]) -> bool:
    """Fetch when checks are failing or artifacts were never synced."""
    never_synced = ci is None or ci.ci_last_synced is None
    return pr_checks == CIChecks.FAILING.value or never_synced


def needs_full_fetch(ci: Optional[CIFacts], head_sha: str) -> bool:
    """A resumed download is only valid for the commit it was started for."""
    return ci is None or ci.ci_head_sha != head_sha


def fetch_ci_artifacts(
    ref: int | str,
    repo: str,
    output_dir: Path,
    resume: bool = False,
    config_file: Optional[Path] = None,
    timeout: int = 600,
) -> CIArtifactStatus:
    """
    Download CI artifacts for a PR.

    Args:
        ref: Pull request number.
        repo: ``owner/repo`` to download from.
        output_dir: Directory to download into.
        resume: Resume a previous download of the same commit.
        config_file: Optional gh-ci-artifacts config.
        timeout: Seconds before the download is abandoned.

    Returns:
        Completeness reported by the tool's exit code.

    Raises:
        CIArtifactsError: If the tool cannot run or exits with an unknown code.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    args = ["npx", "gh-ci-artifacts", str(ref), "--output-dir", str(output_dir), "--repo", repo]
    if config_file:
        args.extend(["--config", str(config_file)])
    if resume:
        args.append("--resume")

    logger.info(f"Fetching CI artifacts for {repo}#{ref} ({'resume' if resume else 'full'})")

    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise CIArtifactsError(f"Failed to run gh-ci-artifacts: {e}") from e

    status = EXIT_STATUS.get(result.returncode)
    if status is None:
        raise CIArtifactsError(
            f"gh-ci-artifacts exited with {result.returncode}: {result.stderr.strip()}"
        )
    return status


def find_summary(artifacts_path: Path) -> Optional[Path]:
    """Locate summary.json inside the ``pr-*`` or ``branch-*`` result directory."""
    if not artifacts_path.is_dir():
        return None

    for entry in sorted(artifacts_path.iterdir()):
        if entry.is_dir() and entry.name.startswith(("pr-", "branch-")):
            summary = entry / SUMMARY_FILENAME
            if summary.exists():
                return summary
    return None


def _list_of_objects(value: Any, where: str) -> list[dict]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise ValueError(f"expected a list of objects for {where}")
    return value


def _count(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"expected an integer for {where}, got {value!r}")
    return value


def parse_ci_summary(summary_path: Path) -> CISummary:
    """
    Count failed tests and linter errors in a summary.json.

    Raises:
        ValueError: If the file is not valid JSON or not shaped like a summary.
    """
    data = json.loads(summary_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    failed_tests = 0
    for run in _list_of_objects(data.get("runs"), "runs"):
        for artifact in _list_of_objects(run.get("artifacts"), "runs[].artifacts"):
            artifact_type = artifact.get("type") or ""
            if not isinstance(artifact_type, str):
                raise ValueError(f"expected a string for artifact type, got {artifact_type!r}")
            if any(kind in artifact_type for kind in TEST_ARTIFACT_TYPES):
                failed_tests += _count(artifact.get("failureCount"), "failureCount")

    linter_errors = sum(
        _count(output.get("errorCount"), "errorCount")
        for output in _list_of_objects(data.get("linterOutputs"), "linterOutputs")
    )

    try:
        status = CIArtifactStatus(data.get("status"))
    except ValueError:
        status = CIArtifactStatus.INCOMPLETE

    return CISummary(status=status, failed_tests=failed_tests, linter_errors=linter_errors)


def _worst(*statuses: Optional[CIArtifactStatus]) -> CIArtifactStatus:
    present = [s for s in statuses if s is not None]
    if not present:
        return CIArtifactStatus.INCOMPLETE
    return max(present, key=_STATUS_RANK.__getitem__)


def collect_ci_facts(
    artifacts_path: Path,
    head_sha: str,
    checks: Optional[CIChecks] = None,
    fetch_status: Optional[CIArtifactStatus] = None,
    now: Optional[datetime] = None,
) -> CIFacts:
    """
    Build the CI metadata group from downloaded artifacts.

    A missing summary yields an ``incomplete`` group carrying only the sync
    time and commit. A partial download is recorded as ``partial`` even if
    the summary itself claims completeness.

    Raises:
        IncompleteMetadataGroup: If the summary exists but cannot be read.
    """
    synced_at = now or datetime.now(timezone.utc)
    summary_path = find_summary(artifacts_path)

    if summary_path is None:
        return CIFacts(
            ci_checks=checks,
            ci_status=CIArtifactStatus.INCOMPLETE,
            ci_last_synced=synced_at,
            ci_head_sha=head_sha,
        )

    try:
        summary = parse_ci_summary(summary_path)
    except (OSError, ValueError) as e:
        raise IncompleteMetadataGroup(MetadataGroup.CI, f"unreadable {summary_path}: {e}") from e

    viewer = summary_path.parent / VIEWER_FILENAME
    return CIFacts(
        ci_checks=checks,
        ci_status=_worst(summary.status, fetch_status),
        ci_failed_tests=summary.failed_tests,
        ci_linter_errors=summary.linter_errors,
        ci_artifacts_path=str(artifacts_path),
        ci_last_synced=synced_at,
        ci_viewer_url=viewer.as_uri() if viewer.exists() else None,
        ci_head_sha=head_sha,
    )
