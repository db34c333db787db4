"""
tmux session management for ghwt.

Sessions are described per project by a YAML or JSON file at
``<projects_root>/terminal-session-config/<project>/.ghwt-session.yaml``.
A session has tabs, each tab has windows, and each window lists pane
commands. ``pre`` commands cascade session -> tab -> window and run in every
pane before the pane's own command. ``{{worktree_path}}``, ``{{project}}``
and ``{{branch}}`` are substituted in roots and commands.
"""

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import libtmux
import libtmux.exc
import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ghwt.config import Config, TerminalUI
from ghwt.core.paths import ProjectPaths

logger = logging.getLogger(__name__)

SESSION_CONFIG_FILENAMES = (".ghwt-session.yaml", ".ghwt-session.yml", ".ghwt-session.json")
DEFAULT_TAB_NAME = "main"


class TmuxError(Exception):
    """Base exception for tmux operations."""


class TmuxSessionNotFoundError(TmuxError):
    """Raised when a requested session doesn't exist."""


class SessionConfigError(TmuxError):
    """Raised when a session config file is missing or invalid."""


class WindowConfig(BaseModel):
    """A tmux window and the commands of its panes."""

    model_config = ConfigDict(extra="forbid")

    name: str
    root: Optional[str] = Field(default=None, description="Directory relative to the worktree")
    pre: list[str] = Field(default_factory=list)
    panes: list[str] = Field(default_factory=list)


class TabConfig(BaseModel):
    """A named group of windows."""

    model_config = ConfigDict(extra="forbid")

    name: str
    pre: list[str] = Field(default_factory=list)
    windows: list[WindowConfig] = Field(min_length=1)


class SessionConfig(BaseModel):
    """Terminal session layout for a project's worktrees."""

    model_config = ConfigDict(extra="ignore")

    name: str
    pre: list[str] = Field(default_factory=list)
    tabs: list[TabConfig] = Field(default_factory=list)
    windows: list[WindowConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _wrap_legacy_windows(self) -> "SessionConfig":
        if not self.tabs and not self.windows:
            raise ValueError("Session must have either 'tabs' or 'windows' defined")
        if not self.tabs:
            self.tabs = [TabConfig(name=DEFAULT_TAB_NAME, windows=self.windows)]
            self.windows = []
        return self


@dataclass
class TmuxSessionInfo:
    """Information about an existing tmux session."""

    session_name: str
    session_id: str
    window_count: int
    pane_count: int
    attached: bool
    working_directory: Optional[str] = None


def substitute_variables(text: str, variables: dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders."""
    for key, value in variables.items():
        text = text.replace(f"{{{{{key}}}}}", value)
    return text


def find_session_config(config: Config, project: str) -> Optional[Path]:
    """Find the session config file for a project, if one exists."""
    config_dir = ProjectPaths.load(config).session_config_root / project
    for filename in SESSION_CONFIG_FILENAMES:
        candidate = config_dir / filename
        if candidate.exists():
            return candidate
    return None


def load_session_config(path: Path) -> SessionConfig:
    """
    Load and validate a session config file.

    Raises:
        SessionConfigError: If the file cannot be parsed or validated.
    """
    try:
        content = path.read_text(encoding="utf-8")
        data = json.loads(content) if path.suffix == ".json" else yaml.safe_load(content)
        return SessionConfig.model_validate(data)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise SessionConfigError(f"Invalid session config {path}:\n{e}") from e


class TmuxManager:
    """
    Manages tmux sessions for worktrees.

    Provides methods to create sessions from a SessionConfig, attach to
    them through the configured terminal UI, and kill them.
    """

    def __init__(self, terminal_ui: TerminalUI = TerminalUI.NONE):
        self.terminal_ui = terminal_ui
        self._server: Optional[libtmux.Server] = None

    @property
    def server(self) -> libtmux.Server:
        """Get or create libtmux server instance."""
        if self._server is None:
            self._server = libtmux.Server()
        return self._server

    def session_exists(self, session_name: str) -> bool:
        """Check if a tmux session exists."""
        try:
            return self.server.has_session(session_name)
        except libtmux.exc.LibTmuxException:
            return False

    def list_session_names(self) -> list[str]:
        """Get the names of all running sessions. No server means no sessions."""
        try:
            return [session.name for session in self.server.sessions]
        except libtmux.exc.LibTmuxException:
            return []

    def _get_session(self, session_name: str) -> libtmux.Session:
        try:
            return self.server.sessions.filter(session_name=session_name)[0]
        except (libtmux.exc.LibTmuxException, IndexError) as e:
            raise TmuxSessionNotFoundError(f"Session '{session_name}' not found.") from e

    def create_session(
        self,
        session_name: str,
        session_config: SessionConfig,
        worktree_path: Path,
        project: str,
        branch: str,
    ) -> Optional[TmuxSessionInfo]:
        """
        Create a detached session laid out per ``session_config``.

        Returns:
            TmuxSessionInfo for the new session, or None if it already existed.

        Raises:
            TmuxError: If the worktree is missing or tmux fails.
        """
        if self.session_exists(session_name):
            logger.info(f"tmux session already exists: {session_name}")
            return None

        if not worktree_path.is_dir():
            raise TmuxError(f"Working directory does not exist: {worktree_path}")

        variables = {"worktree_path": str(worktree_path), "project": project, "branch": branch}

        try:
            session = self.server.new_session(
                session_name=session_name,
                start_directory=str(worktree_path),
                attach=False,
            )

            first = True
            for tab in session_config.tabs:
                for window_config in tab.windows:
                    window_root = worktree_path / window_config.root if window_config.root else worktree_path
                    root = substitute_variables(str(window_root), variables)
                    window_name = f"{tab.name}:{window_config.name}"

                    if first:
                        window = session.active_window
                        window.rename_window(window_name)
                        if root != str(worktree_path):
                            window.active_pane.send_keys(f"cd {root}", enter=True)
                        first = False
                    else:
                        window = session.new_window(
                            window_name=window_name,
                            start_directory=root,
                            attach=False,
                        )

                    pre = session_config.pre + tab.pre + window_config.pre
                    self._setup_panes(window, window_config.panes, pre, root, variables)

            session.windows[0].select()
            return self._get_session_info(session)

        except libtmux.exc.LibTmuxException as e:
            raise TmuxError(f"Failed to create tmux session: {e}") from e

    def _setup_panes(
        self,
        window: libtmux.Window,
        commands: list[str],
        pre: list[str],
        root: str,
        variables: dict[str, str],
    ) -> None:
        """Split ``window`` into one pane per command and start each command."""
        for index, command in enumerate(commands):
            if index == 0:
                pane = window.active_pane
            else:
                pane = window.split(start_directory=root)
                window.select_layout("tiled")

            for pre_command in pre:
                pane.send_keys(substitute_variables(pre_command, variables), enter=True)
            if command:
                pane.send_keys(substitute_variables(command, variables), enter=True)

    def _get_session_info(self, session: libtmux.Session) -> TmuxSessionInfo:
        """Extract session information from libtmux session object."""
        windows = session.windows
        working_dir = None
        if windows and windows[0].panes:
            working_dir = windows[0].panes[0].pane_current_path

        return TmuxSessionInfo(
            session_name=session.name,
            session_id=session.id,
            window_count=len(windows),
            pane_count=sum(len(w.panes) for w in windows),
            attached=int(getattr(session, "session_attached", 0) or 0) > 0,
            working_directory=working_dir,
        )

    def kill_session(self, session_name: str) -> None:
        """
        Kill a tmux session.

        Raises:
            TmuxSessionNotFoundError: If session doesn't exist
            TmuxError: If tmux fails to kill the session
        """
        if not self.session_exists(session_name):
            raise TmuxSessionNotFoundError(f"Session '{session_name}' not found.")

        try:
            self._get_session(session_name).kill()
        except libtmux.exc.LibTmuxException as e:
            raise TmuxError(f"Failed to kill session '{session_name}': {e}") from e

    def is_inside_tmux(self) -> bool:
        """Check if currently running inside a tmux session."""
        return "TMUX" in os.environ

    def _ui_command(self, session_name: str, worktree_path: Path) -> Optional[list[str]]:
        attach = ["tmux", "attach-session", "-t", session_name]
        if self.terminal_ui == TerminalUI.WEZTERM and shutil.which("wezterm"):
            return [
                "wezterm", "start", "--workspace", session_name,
                "--cwd", str(worktree_path), "--always-new-process", "--",
            ] + attach
        if self.terminal_ui == TerminalUI.GHOSTTY and shutil.which("ghostty"):
            return ["ghostty", f"--working-directory={worktree_path}", "-e"] + attach
        return None

    def attach(self, session_name: str, worktree_path: Path) -> None:
        """
        Show a session: in a new terminal window when a terminal UI is
        configured, otherwise in the current terminal.

        Raises:
            TmuxSessionNotFoundError: If session doesn't exist
            TmuxError: If tmux or the terminal UI fails to start
        """
        if not self.session_exists(session_name):
            raise TmuxSessionNotFoundError(
                f"Session '{session_name}' not found. "
                f"Use 'ghwt sync --sessions' to recreate missing sessions."
            )

        ui_command = self._ui_command(session_name, worktree_path)
        try:
            if ui_command:
                subprocess.Popen(ui_command, start_new_session=True)
            elif self.is_inside_tmux():
                subprocess.run(["tmux", "switch-client", "-t", session_name], check=True)
            else:
                subprocess.run(["tmux", "attach-session", "-t", session_name], check=True)
        except subprocess.CalledProcessError as e:
            raise TmuxError(
                f"Failed to attach to session '{session_name}': tmux exited with {e.returncode}"
            ) from e
        except OSError as e:
            raise TmuxError(f"Failed to attach to session '{session_name}': {e}") from e


def launch_session(
    config: Config,
    project: str,
    branch: str,
    session_name: str,
    worktree_path: Path,
    manager: Optional[TmuxManager] = None,
) -> Optional[TmuxSessionInfo]:
    """
    Create the configured session for a worktree.

    Returns:
        TmuxSessionInfo, or None when the project has no session config or
        the session already exists.
    """
    config_path = find_session_config(config, project)
    if config_path is None:
        logger.debug(f"No session config for project '{project}'")
        return None

    manager = manager or TmuxManager(config.terminal_ui)
    return manager.create_session(
        session_name,
        load_session_config(config_path),
        worktree_path,
        project,
        branch,
    )
