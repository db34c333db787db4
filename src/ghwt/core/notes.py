"""
Worktree note files: YAML front-matter atop a Markdown body.

The front-matter keys are the WorktreeMetadata field names. Keys that belong
to no metadata group were added by the user and are preserved on update, as
is everything the user wrote under the ``## Notes`` heading.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Collection, Optional
from urllib.parse import quote

import yaml
from pydantic import ValidationError

from ghwt.config import Config
from ghwt.models.metadata import FRONTMATTER_KEYS, ManualFields, WorktreeMetadata
from ghwt.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

_FRONTMATTER_PATTERN = re.compile(r"\A---\n(.*?)\n---\n?(.*)\Z", re.DOTALL)
_USER_NOTES_PATTERN = re.compile(r"## Notes\n(.*?)\n## Quick Actions", re.DOTALL)

QUICK_ACTIONS = (
    ("📝 Open Code", "code"),
    ("📄 Open Note", "note"),
    ("⌨️ Open Terminal", "attach"),
)


class NoteError(Exception):
    """Raised when a note cannot be interpreted as worktree metadata."""


@dataclass
class NoteContent:
    """Parsed note: front-matter mapping and Markdown body."""

    frontmatter: dict[str, Any] = field(default_factory=dict)
    body: str = ""

    @property
    def extra_frontmatter(self) -> dict[str, Any]:
        """Front-matter keys that are not metadata fields."""
        return {k: v for k, v in self.frontmatter.items() if k not in FRONTMATTER_KEYS}

    def metadata(self) -> WorktreeMetadata:
        """
        Interpret the front-matter as worktree metadata.

        Raises:
            NoteError: If required fields are missing or values are invalid.
        """
        try:
            return WorktreeMetadata.from_frontmatter(self.frontmatter)
        except ValidationError as e:
            raise NoteError(f"Invalid note front-matter:\n{e}") from e


def parse_frontmatter(content: str) -> NoteContent:
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        return NoteContent(frontmatter={}, body=content)

    try:
        frontmatter = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Could not parse note front-matter: {e}")
        return NoteContent(frontmatter={}, body=content)

    if not isinstance(frontmatter, dict):
        return NoteContent(frontmatter={}, body=content)

    return NoteContent(frontmatter=frontmatter, body=match.group(2))


def serialize_frontmatter(frontmatter: dict[str, Any]) -> str:
    dumped = yaml.safe_dump(
        frontmatter,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )
    return f"---\n{dumped}---"


def read_note(note_path: Path) -> NoteContent:
    """Read a note. A missing file reads as an empty note."""
    if not note_path.exists():
        return NoteContent()
    return parse_frontmatter(note_path.read_text(encoding="utf-8"))


def write_note(note_path: Path, frontmatter: dict[str, Any], body: str) -> None:
    content = f"{serialize_frontmatter(frontmatter)}\n\n{body}"
    atomic_write_text(note_path, content)


def extract_user_notes(body: str) -> str:
    """Get the text between ``## Notes`` and ``## Quick Actions``."""
    match = _USER_NOTES_PATTERN.search(body)
    return match.group(1) if match else ""


def _quick_actions(metadata: WorktreeMetadata, config: Optional[Config]) -> str:
    section = "## Quick Actions\n\n"
    if not config or not (config.obsidian_vault_name and config.shell_command_execute_id):
        return section

    vault = quote(config.obsidian_vault_name, safe="")
    execute_id = quote(config.shell_command_execute_id, safe="")
    project = quote(metadata.manual.project, safe="")
    worktree = quote(metadata.identity.name, safe="")

    for label, subcommand in QUICK_ACTIONS:
        section += (
            f"[{label}](obsidian://shell-commands/?vault={vault}&execute={execute_id}"
            f"&_subcommand={subcommand}&_project={project}&_worktree={worktree})\n"
        )
    return section


def generate_note_body(metadata: WorktreeMetadata, config: Optional[Config] = None) -> str:
    """Render the Markdown body for a worktree note."""
    manual = metadata.manual
    worktree_path = metadata.git.worktree_path if metadata.git else None

    ci_section = ""
    if metadata.ci and metadata.ci.ci_viewer_url:
        ci_section = f"## CI Artifacts\n- [View Results]({metadata.ci.ci_viewer_url})\n\n"

    links = ["## Links"]
    if worktree_path:
        links.append(f"- [Open in VS Code](vscode://file/{worktree_path})")
        links.append(f"- `{worktree_path}` (copy path)")
    if manual.pr:
        links.append(f"- [PR link]({manual.pr})")

    return (
        "## Summary\n"
        f"Worktree created for **{manual.branch}** in project **{manual.project}**\n"
        "\n"
        "## TODO\n"
        "- [ ] Implement main feature\n"
        "- [ ] Push branch\n"
        "- [ ] Create PR (if not exists)\n"
        "\n"
        f"{ci_section}"
        "## Notes\n"
        "\n"
        f"{_quick_actions(metadata, config)}\n"
        + "\n".join(links)
        + "\n"
    )


def create_worktree_note(
    note_path: Path,
    metadata: WorktreeMetadata,
    config: Optional[Config] = None,
) -> None:
    """Write a fresh note for a new worktree."""
    write_note(note_path, metadata.to_frontmatter(), generate_note_body(metadata, config))
    logger.info(f"Note created: {note_path}")


def update_note_metadata(
    note_path: Path,
    metadata: WorktreeMetadata,
    config: Optional[Config] = None,
    manual_keys: Collection[str] = (),
) -> None:
    """
    Rewrite a note's synced front-matter from ``metadata``.

    Synced group keys are rewritten as a whole, so fields dropped from a
    replaced group disappear. Manual keys are copied back exactly as the note
    stored them, and a manual key the note lacks stays absent. User-added keys
    and the user's notes section survive.

    Args:
        note_path: Note to update.
        metadata: Record holding the new synced groups.
        config: Config used to render quick actions in the body.
        manual_keys: Manual keys to take from ``metadata`` instead, for
            callers that change them on purpose.
    """
    existing = read_note(note_path)
    generated = metadata.to_frontmatter()
    manual = ManualFields.keys()

    frontmatter = {
        key: value for key, value in existing.frontmatter.items() if key in manual
    }
    if not frontmatter:
        frontmatter = {key: value for key, value in generated.items() if key in manual}
    for key in manual_keys:
        if key in generated:
            frontmatter[key] = generated[key]
        else:
            frontmatter.pop(key, None)
    frontmatter.update({key: value for key, value in generated.items() if key not in manual})
    frontmatter.update(existing.extra_frontmatter)

    user_notes = extract_user_notes(existing.body)
    body = generate_note_body(metadata, config)
    if user_notes:
        body = body.replace("## Notes\n", f"## Notes\n{user_notes}", 1)

    write_note(note_path, frontmatter, body)


DASHBOARD_FILENAME = "dashboard.md"

DASHBOARD_BODY = """# Development Dashboard

## Active Work

```dataview
TABLE project, branch, status, commits_ahead, pr_checks, days_since_activity
FROM "projects"
WHERE status != "merged"
SORT created DESC
```

## Needs Attention

```dataview
TABLE project, branch, pr_checks, ci_failed_tests, days_since_activity
FROM "projects"
WHERE (pr_checks = "failing" OR ci_checks = "failing" OR days_since_activity > 7 OR has_uncommitted_changes = true)
SORT days_since_activity DESC
```

## Ready to Merge

```dataview
TABLE project, branch, status, pr_updated_at
FROM "projects"
WHERE status = "review" AND pr_state = "OPEN"
SORT pr_updated_at DESC
```
"""


def create_dashboard(vault_path: Path) -> Optional[Path]:
    """
    Write the Dataview dashboard note into the vault.

    Returns:
        Path of the new dashboard, or None if one already exists.
    """
    dashboard = vault_path / DASHBOARD_FILENAME
    if dashboard.exists():
        return None

    write_note(dashboard, {"type": "dashboard", "created": date.today().isoformat()}, DASHBOARD_BODY)
    return dashboard
