"""Tests for CI artifact collection."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ghwt.core.ci_artifacts import (
    CIArtifactsError,
    collect_ci_facts,
    fetch_ci_artifacts,
    find_ci_config_file,
    find_summary,
    needs_full_fetch,
    parse_ci_summary,
    should_fetch_artifacts,
)
from ghwt.models.metadata import (
    CIArtifactStatus,
    CIChecks,
    CIFacts,
    IncompleteMetadataGroup,
    MetadataGroup,
)

NOW = datetime(2024, 1, 20, 12, 0, tzinfo=timezone.utc)

SUMMARY = {
    "status": "complete",
    "runs": [
        {
            "artifacts": [
                {"type": "jest-json", "failureCount": 2},
                {"type": "pytest-junit", "failureCount": 1},
                {"type": "coverage", "failureCount": 9},
            ]
        },
        {"artifacts": [{"type": "playwright-json"}]},
    ],
    "linterOutputs": [{"errorCount": 4}, {"errorCount": 1}],
}


@pytest.fixture
def artifacts_dir(temp_directory: Path) -> Path:
    """Artifacts directory holding a summary and viewer."""
    path = temp_directory / "ci-artifacts" / "galaxy" / "pr-1234"
    result_dir = path / "pr-1234"
    result_dir.mkdir(parents=True)
    (result_dir / "summary.json").write_text(json.dumps(SUMMARY))
    (result_dir / "index.html").write_text("<html></html>")
    return path


class TestFetchDecisions:
    """Tests for when artifacts are fetched."""

    def test_never_synced(self):
        assert should_fetch_artifacts(None, "passing")
        assert should_fetch_artifacts(CIFacts(ci_checks=CIChecks.PASSING), "passing")

    def test_failing(self):
        assert should_fetch_artifacts(CIFacts(ci_last_synced=NOW), "failing")

    def test_passing_and_synced(self):
        assert not should_fetch_artifacts(CIFacts(ci_last_synced=NOW), "passing")

    def test_needs_full_fetch(self):
        assert needs_full_fetch(None, "abc")
        assert needs_full_fetch(CIFacts(ci_head_sha="old"), "abc")
        assert not needs_full_fetch(CIFacts(ci_head_sha="abc"), "abc")

    def test_find_ci_config_file(self, temp_directory):
        assert find_ci_config_file(temp_directory, "galaxy") is None

        config_file = temp_directory / "galaxy" / ".gh-ci-artifacts.yml"
        config_file.parent.mkdir()
        config_file.write_text("{}")

        assert find_ci_config_file(temp_directory, "galaxy") == config_file


class TestFetchCIArtifacts:
    """Tests for running gh-ci-artifacts."""

    @pytest.mark.parametrize(
        "returncode,status",
        [
            (0, CIArtifactStatus.COMPLETE),
            (1, CIArtifactStatus.PARTIAL),
            (2, CIArtifactStatus.INCOMPLETE),
        ],
    )
    def test_exit_codes(self, mock_subprocess_run, temp_directory, returncode, status):
        mock_subprocess_run.return_value.returncode = returncode

        assert fetch_ci_artifacts(1234, "acme/galaxy", temp_directory / "out") == status
        assert (temp_directory / "out").is_dir()

    def test_unknown_exit_code(self, mock_subprocess_run, temp_directory):
        mock_subprocess_run.return_value.returncode = 3
        mock_subprocess_run.return_value.stderr = "boom"

        with pytest.raises(CIArtifactsError, match="boom"):
            fetch_ci_artifacts(1234, "acme/galaxy", temp_directory)

    def test_arguments(self, mock_subprocess_run, temp_directory):
        config_file = temp_directory / "cfg.json"

        fetch_ci_artifacts(
            1234, "acme/galaxy", temp_directory, resume=True, config_file=config_file
        )

        args = mock_subprocess_run.call_args[0][0]
        assert args[:3] == ["npx", "gh-ci-artifacts", "1234"]
        assert ["--repo", "acme/galaxy"] == args[5:7]
        assert "--resume" in args
        assert str(config_file) in args

    def test_npx_missing(self, mock_subprocess_run, temp_directory):
        mock_subprocess_run.side_effect = FileNotFoundError("npx")

        with pytest.raises(CIArtifactsError):
            fetch_ci_artifacts(1, "acme/galaxy", temp_directory)


class TestSummary:
    """Tests for summary parsing."""

    def test_find_summary(self, artifacts_dir):
        assert find_summary(artifacts_dir) == artifacts_dir / "pr-1234" / "summary.json"

    def test_find_summary_missing(self, temp_directory):
        assert find_summary(temp_directory / "nothing") is None

    def test_parse_counts(self, artifacts_dir):
        summary = parse_ci_summary(find_summary(artifacts_dir))

        assert summary.status == CIArtifactStatus.COMPLETE
        assert summary.failed_tests == 3
        assert summary.linter_errors == 5

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "complete",
            {"runs": {"artifacts": []}},
            {"runs": [{"artifacts": "none"}]},
            {"runs": [{"artifacts": [{"type": "jest-json", "failureCount": "2"}]}]},
            {"linterOutputs": [4]},
        ],
    )
    def test_malformed_shapes_rejected(self, temp_directory, payload):
        """Test well-formed JSON of the wrong shape raises ValueError."""
        summary_path = temp_directory / "summary.json"
        summary_path.write_text(json.dumps(payload))

        with pytest.raises(ValueError):
            parse_ci_summary(summary_path)


class TestCollectCIFacts:
    """Tests for collect_ci_facts."""

    def test_complete(self, artifacts_dir):
        facts = collect_ci_facts(artifacts_dir, "abc", CIChecks.FAILING, now=NOW)

        assert facts.ci_status == CIArtifactStatus.COMPLETE
        assert facts.ci_checks == CIChecks.FAILING
        assert facts.ci_failed_tests == 3
        assert facts.ci_linter_errors == 5
        assert facts.ci_head_sha == "abc"
        assert facts.ci_last_synced == NOW
        assert facts.ci_viewer_url.startswith("file://")
        assert facts.ci_viewer_url.endswith("pr-1234/index.html")

    def test_partial_download_marked(self, artifacts_dir):
        facts = collect_ci_facts(
            artifacts_dir, "abc", fetch_status=CIArtifactStatus.PARTIAL, now=NOW
        )

        assert facts.ci_status == CIArtifactStatus.PARTIAL

    def test_no_summary(self, temp_directory):
        facts = collect_ci_facts(temp_directory, "abc", CIChecks.PENDING, now=NOW)

        assert facts == CIFacts(
            ci_checks=CIChecks.PENDING,
            ci_status=CIArtifactStatus.INCOMPLETE,
            ci_last_synced=NOW,
            ci_head_sha="abc",
        )

    def test_unreadable_summary(self, artifacts_dir):
        (artifacts_dir / "pr-1234" / "summary.json").write_text("{not json")

        with pytest.raises(IncompleteMetadataGroup) as exc_info:
            collect_ci_facts(artifacts_dir, "abc")

        assert exc_info.value.group == MetadataGroup.CI

    def test_list_summary_is_incomplete(self, artifacts_dir):
        (artifacts_dir / "pr-1234" / "summary.json").write_text("[]")

        with pytest.raises(IncompleteMetadataGroup) as exc_info:
            collect_ci_facts(artifacts_dir, "abc")

        assert exc_info.value.group == MetadataGroup.CI
        assert "expected a JSON object" in exc_info.value.reason
