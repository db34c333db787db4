"""Tests for note persistence."""

from pathlib import Path

import pytest

from ghwt.config import Config
from ghwt.core.notes import (
    NoteContent,
    NoteError,
    create_dashboard,
    create_worktree_note,
    extract_user_notes,
    generate_note_body,
    parse_frontmatter,
    read_note,
    serialize_frontmatter,
    update_note_metadata,
    write_note,
)
from ghwt.models.metadata import CIFacts, MetadataGroup, WorktreeMetadata


@pytest.fixture
def note_file(temp_directory: Path) -> Path:
    return temp_directory / "projects" / "galaxy" / "worktrees" / "fix-bug-123.md"


class TestFrontmatter:
    """Tests for parsing and serializing front-matter."""

    def test_parse(self):
        content = parse_frontmatter("---\nproject: galaxy\ncommits_ahead: 2\n---\n\n# Body\n")

        assert content.frontmatter == {"project": "galaxy", "commits_ahead": 2}
        assert content.body == "\n# Body\n"

    def test_no_frontmatter(self):
        content = parse_frontmatter("# Just a body\n")

        assert content.frontmatter == {}
        assert content.body == "# Just a body\n"

    def test_invalid_yaml_treated_as_body(self):
        text = "---\nkey: [unclosed\n---\nbody"

        content = parse_frontmatter(text)

        assert content.frontmatter == {}
        assert content.body == text

    def test_serialize_keeps_order(self):
        text = serialize_frontmatter({"project": "galaxy", "branch": "x", "pr_labels": ["a", "b"]})

        assert text.startswith("---\nproject: galaxy\nbranch: x\n")
        assert text.endswith("---")
        assert parse_frontmatter(text + "\n").frontmatter["pr_labels"] == ["a", "b"]

    def test_read_missing_note(self, temp_directory):
        assert read_note(temp_directory / "missing.md") == NoteContent()

    def test_write_and_read(self, note_file):
        write_note(note_file, {"project": "galaxy", "custom": True}, "## Notes\n")

        content = read_note(note_file)

        assert content.frontmatter == {"project": "galaxy", "custom": True}
        assert content.body == "\n## Notes\n"
        assert content.extra_frontmatter == {"custom": True}

    def test_metadata_error(self):
        with pytest.raises(NoteError):
            NoteContent(frontmatter={"branch": "x"}).metadata()


class TestNoteBody:
    """Tests for the generated Markdown body."""

    def test_sections(self, branch_metadata):
        body = generate_note_body(branch_metadata)

        for heading in ("## Summary", "## TODO", "## Notes", "## Quick Actions", "## Links"):
            assert heading in body
        assert "**fix/bug-123**" in body
        assert "vscode://file//projects/worktrees/galaxy/branch/fix/bug-123" in body

    def test_ci_link(self, branch_metadata):
        metadata = branch_metadata.replace_group(
            MetadataGroup.CI, CIFacts(ci_viewer_url="file:///tmp/index.html")
        )

        assert "[View Results](file:///tmp/index.html)" in generate_note_body(metadata)

    def test_pr_link(self, pr_metadata):
        body = generate_note_body(pr_metadata)

        assert "[PR link](https://github.com/acme/galaxy/pull/1234)" in body

    def test_quick_actions_need_config(self, branch_metadata):
        assert "obsidian://shell-commands" not in generate_note_body(branch_metadata, Config())

    def test_quick_actions(self, branch_metadata):
        config = Config(obsidian_vault_name="My Vault", shell_command_execute_id="abc123")

        body = generate_note_body(branch_metadata, config)

        assert "vault=My%20Vault&execute=abc123&_subcommand=attach" in body
        assert "_worktree=fix%2Fbug-123" in body

    def test_extract_user_notes(self):
        body = "## Notes\nremember the milk\n\n## Quick Actions\n"

        assert extract_user_notes(body) == "remember the milk\n"
        assert extract_user_notes("no notes here") == ""


class TestNoteLifecycle:
    """Tests for creating and updating worktree notes."""

    def test_create(self, note_file, branch_metadata):
        create_worktree_note(note_file, branch_metadata)

        assert read_note(note_file).metadata() == branch_metadata

    def test_update_preserves_user_content(self, note_file, branch_metadata):
        create_worktree_note(note_file, branch_metadata)
        content = read_note(note_file)
        frontmatter = {**content.frontmatter, "priority": "high"}
        body = content.body.replace("## Notes\n", "## Notes\nMy own notes\n")
        write_note(note_file, frontmatter, body.lstrip("\n"))

        updated = branch_metadata.replace_group(MetadataGroup.CI, CIFacts(ci_failed_tests=2))
        update_note_metadata(note_file, updated)

        result = read_note(note_file)
        assert result.frontmatter["priority"] == "high"
        assert result.frontmatter["ci_failed_tests"] == 2
        assert "My own notes" in result.body
        assert result.metadata() == updated

    def test_update_removes_dropped_fields(self, note_file, branch_metadata):
        create_worktree_note(
            note_file,
            branch_metadata.replace_group(MetadataGroup.CI, CIFacts(ci_failed_tests=5)),
        )

        update_note_metadata(note_file, branch_metadata.replace_group(MetadataGroup.CI, CIFacts()))

        assert "ci_failed_tests" not in read_note(note_file).frontmatter


class TestDashboard:
    """Tests for the dashboard note."""

    def test_created_once(self, temp_directory):
        first = create_dashboard(temp_directory)

        assert first == temp_directory / "dashboard.md"
        assert read_note(first).frontmatter["type"] == "dashboard"
        assert create_dashboard(temp_directory) is None
