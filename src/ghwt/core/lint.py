"""
Consistency checks for a ghwt workspace.

Checks the config file, session configs, the directory layout, every
worktree note, gh-ci-artifacts configs, and that worktrees, notes and CI
artifact directories match up. Problems that break a command are errors;
leftovers and missing optional pieces are warnings.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel

from ghwt.config import Config, ConfigError, config_search_paths, read_config_file
from ghwt.core.ci_artifacts import CI_CONFIG_FILENAMES
from ghwt.core.notes import NoteError, read_note
from ghwt.core.paths import NOTES_DIR, ProjectPaths, note_dir, note_file_name
from ghwt.core.tmux_manager import SESSION_CONFIG_FILENAMES, SessionConfigError, load_session_config
from ghwt.core.worktree_list import list_worktrees
from ghwt.models.identity import BranchIdentity, IdentityKind
from ghwt.models.metadata import WorktreeMetadata

logger = logging.getLogger(__name__)


class LintReport(BaseModel):
    """Findings of a lint run."""

    errors: List[str] = []
    warnings: List[str] = []
    passed: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


def _subdirs(path: Path) -> list[Path]:
    return sorted(p for p in path.iterdir() if p.is_dir())


def _check_config(report: LintReport, config_path: Optional[str]) -> Config:
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            report.errors.append(f"Config file not found: {path}")
            return Config()
        candidates = [path]
    else:
        candidates = [p for p in config_search_paths() if p.exists()]
        if not candidates:
            report.warnings.append("No config file found (using defaults)")
            return Config()

    try:
        config = read_config_file(candidates[0])
    except ConfigError as e:
        report.errors.append(str(e))
        return Config()
    report.passed.append(f"Config: valid ({candidates[0]})")
    return config


def _check_session_configs(report: LintReport, paths: ProjectPaths) -> None:
    root = paths.session_config_root
    if not root.is_dir():
        report.warnings.append(f"Session config directory not found: {root}")
        return

    total = valid = 0
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            report.warnings.append(f"Unexpected file in {root.name}: {entry.name}")
            continue
        for child in sorted(entry.iterdir()):
            if child.name not in SESSION_CONFIG_FILENAMES:
                report.warnings.append(f"Unexpected file in {root.name}/{entry.name}: {child.name}")
                continue
            total += 1
            try:
                load_session_config(child)
                valid += 1
            except SessionConfigError as e:
                report.errors.append(str(e))

    if total:
        report.passed.append(f"Session configs: {valid}/{total} valid")
    else:
        report.warnings.append(f"No session config files found in {root}")


def _check_structure(report: LintReport, paths: ProjectPaths) -> None:
    missing = [
        f"Missing {label}: {path}"
        for label, path in (
            ("projects root", paths.projects_root),
            ("repositories directory", paths.repos_root),
            ("worktrees directory", paths.worktrees_root),
            ("vault", paths.vault_root),
        )
        if not path.is_dir()
    ]
    report.errors.extend(missing)
    if not missing:
        report.passed.append("Project structure: all directories exist")


def _worktree_exists(paths: ProjectPaths, metadata: WorktreeMetadata) -> bool:
    project = metadata.manual.project
    if paths.worktree(project, metadata.identity).is_dir():
        return True
    return metadata.is_pull_request and paths.worktree(
        project, BranchIdentity(metadata.manual.branch)
    ).is_dir()


def _check_notes(report: LintReport, paths: ProjectPaths) -> None:
    projects_dir = paths.vault_root / NOTES_DIR
    if not projects_dir.is_dir():
        report.errors.append(f"Vault projects directory not found: {projects_dir}")
        return

    total = valid = orphans = 0
    for project_dir in _subdirs(projects_dir):
        notes = note_dir(paths.vault_root, project_dir.name)
        if not notes.is_dir():
            continue
        for note in sorted(notes.glob("*.md")):
            total += 1
            label = f"{project_dir.name}/{note.name}"
            try:
                metadata = read_note(note).metadata()
            except NoteError as e:
                report.errors.append(f"Note {label} is invalid: {e}")
                continue
            valid += 1
            if not _worktree_exists(paths, metadata):
                report.errors.append(f"Note without worktree: {label}")
                orphans += 1

    if total:
        report.passed.append(f"Worktree notes: {valid}/{total} valid")
        if not orphans:
            report.passed.append("Worktree notes: all notes have worktrees")


def _check_ci_configs(report: LintReport, paths: ProjectPaths) -> None:
    root = paths.ci_artifacts_config_root
    if not root.is_dir():
        report.warnings.append(f"CI config directory not found: {root}")
        return

    total = valid = 0
    for repo_dir in _subdirs(root):
        for child in sorted(repo_dir.iterdir()):
            if child.name not in CI_CONFIG_FILENAMES:
                report.warnings.append(f"Unexpected file in {root.name}/{repo_dir.name}: {child.name}")
                continue
            total += 1
            try:
                content = child.read_text(encoding="utf-8")
                data = json.loads(content) if child.suffix == ".json" else yaml.safe_load(content)
            except (OSError, ValueError, yaml.YAMLError) as e:
                report.errors.append(f"CI config {repo_dir.name}/{child.name} is invalid: {e}")
                continue
            if not isinstance(data, dict):
                report.errors.append(f"CI config {repo_dir.name}/{child.name} is not a mapping")
                continue
            valid += 1

    if total:
        report.passed.append(f"CI configs: {valid}/{total} valid")


def _check_vault(report: LintReport, config: Config) -> None:
    if config.obsidian_vault_name:
        report.passed.append(f"Obsidian vault: configured as '{config.obsidian_vault_name}'")
    else:
        report.warnings.append("Obsidian vault name not configured (links use the folder name)")


def _check_worktrees_have_notes(report: LintReport, config: Config, paths: ProjectPaths) -> None:
    worktrees = list_worktrees(config)
    missing = 0
    for wt in worktrees:
        note = paths.note(wt.project, wt.identity)
        if not note.exists():
            report.errors.append(f"Worktree without note: {wt.display_name} (expected {note})")
            missing += 1
    if worktrees and not missing:
        report.passed.append("Worktrees: all worktrees have notes")


def _check_ci_artifacts(report: LintReport, paths: ProjectPaths) -> None:
    root = paths.ci_artifacts_root
    if not root.is_dir():
        return

    prefixes = tuple(f"{kind.value}-" for kind in IdentityKind)
    for project_dir in _subdirs(root):
        for artifacts in _subdirs(project_dir):
            label = f"{project_dir.name}/{artifacts.name}"
            if not artifacts.name.startswith(prefixes):
                report.warnings.append(f"Unexpected directory in {root.name}: {label}")
                continue
            flat_name = artifacts.name.split("-", 1)[1]
            note = note_dir(paths.vault_root, project_dir.name) / note_file_name(flat_name)
            if not note.exists():
                report.warnings.append(f"CI artifacts without note: {label}")


def lint_workspace(
    config_path: Optional[str] = None,
    session_only: bool = False,
    config_only: bool = False,
) -> LintReport:
    """
    Run every workspace check.

    Args:
        config_path: Config file to check instead of the search order.
        session_only: Skip the config file check.
        config_only: Skip the session config check.

    Returns:
        LintReport with errors, warnings and passed checks.
    """
    config_report = LintReport()
    config = _check_config(config_report, config_path)
    report = LintReport() if session_only else config_report
    paths = ProjectPaths.load(config)

    if not config_only:
        _check_session_configs(report, paths)
    _check_structure(report, paths)
    if paths.vault_root.is_dir():
        _check_notes(report, paths)
        _check_vault(report, config)
    _check_ci_configs(report, paths)
    _check_worktrees_have_notes(report, config, paths)
    _check_ci_artifacts(report, paths)
    logger.debug(f"Lint finished: {len(report.errors)} errors, {len(report.warnings)} warnings")
    return report
