"""Tests for the tmux manager module."""

import json
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, PropertyMock, call, patch

import libtmux.exc
import pytest
from pydantic import ValidationError

from ghwt.config import Config, TerminalUI
from ghwt.core.tmux_manager import (
    DEFAULT_TAB_NAME,
    SessionConfig,
    SessionConfigError,
    TmuxError,
    TmuxManager,
    TmuxSessionInfo,
    TmuxSessionNotFoundError,
    find_session_config,
    launch_session,
    load_session_config,
    substitute_variables,
)


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig.model_validate(
        {
            "name": "dev",
            "pre": ["source .venv/bin/activate"],
            "tabs": [
                {
                    "name": "code",
                    "pre": ["export APP_ENV=dev"],
                    "windows": [
                        {"name": "editor", "pre": ["clear"], "panes": ["vim {{branch}}", ""]},
                        {"name": "docs", "root": "docs", "panes": ["ls"]},
                    ],
                }
            ],
        }
    )


class TestSessionConfig:
    """Tests for session config models."""

    def test_legacy_windows_wrapped_in_tab(self):
        config = SessionConfig.model_validate(
            {"name": "dev", "windows": [{"name": "shell", "panes": ["zsh"]}]}
        )

        assert len(config.tabs) == 1
        assert config.tabs[0].name == DEFAULT_TAB_NAME
        assert config.tabs[0].windows[0].name == "shell"
        assert config.windows == []

    def test_requires_tabs_or_windows(self):
        with pytest.raises(ValidationError):
            SessionConfig.model_validate({"name": "dev"})

    def test_substitute_variables(self):
        text = substitute_variables(
            "cd {{worktree_path}} && echo {{project}}:{{branch}}",
            {"worktree_path": "/wt", "project": "galaxy", "branch": "fix/x"},
        )

        assert text == "cd /wt && echo galaxy:fix/x"


class TestSessionConfigFiles:
    """Tests for finding and loading session config files."""

    def test_find_and_load_yaml(self, config: Config):
        config_dir = config.expanded_projects_root / "terminal-session-config" / "galaxy"
        config_dir.mkdir(parents=True)
        path = config_dir / ".ghwt-session.yaml"
        path.write_text("name: dev\nwindows:\n  - name: shell\n    panes: [zsh]\n")

        assert find_session_config(config, "galaxy") == path
        assert load_session_config(path).tabs[0].windows[0].panes == ["zsh"]

    def test_load_json(self, temp_directory):
        path = temp_directory / ".ghwt-session.json"
        path.write_text(json.dumps({"name": "dev", "tabs": [{"name": "t", "windows": [{"name": "w"}]}]}))

        assert load_session_config(path).tabs[0].name == "t"

    def test_missing(self, config: Config):
        assert find_session_config(config, "galaxy") is None

    def test_invalid(self, temp_directory):
        path = temp_directory / ".ghwt-session.yaml"
        path.write_text("name: dev\ntabs: []\n")

        with pytest.raises(SessionConfigError):
            load_session_config(path)


class TestTmuxManager:
    """Tests for TmuxManager class."""

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_session_exists_true(self, mock_server_prop):
        """Test checking if session exists when it does."""
        mock_server = MagicMock()
        mock_server.has_session.return_value = True
        mock_server_prop.return_value = mock_server

        manager = TmuxManager()

        assert manager.session_exists("galaxy-x") is True
        mock_server.has_session.assert_called_once_with("galaxy-x")

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_session_exists_exception(self, mock_server_prop):
        """Test handling libtmux exception when checking session."""
        mock_server = MagicMock()
        mock_server.has_session.side_effect = libtmux.exc.LibTmuxException("error")
        mock_server_prop.return_value = mock_server

        assert TmuxManager().session_exists("galaxy-x") is False

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_create_session_already_exists(self, mock_server_prop, session_config, temp_dir):
        mock_server = MagicMock()
        mock_server.has_session.return_value = True
        mock_server_prop.return_value = mock_server

        result = TmuxManager().create_session("galaxy-x", session_config, temp_dir, "galaxy", "x")

        assert result is None
        mock_server.new_session.assert_not_called()

    def test_create_session_invalid_directory(self, session_config):
        """Test creating session with non-existent directory."""
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=False):
            with pytest.raises(TmuxError) as exc_info:
                manager.create_session(
                    "galaxy-x", session_config, Path("/nonexistent/path"), "galaxy", "x"
                )

        assert "Working directory does not exist" in str(exc_info.value)

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_create_session_layout(
        self,
        mock_server_prop,
        session_config,
        temp_dir: Path,
        mock_libtmux_session: MagicMock,
    ):
        """Test windows are named tab:window and pre commands cascade into every pane."""
        mock_server = MagicMock()
        mock_server.has_session.return_value = False
        mock_server.new_session.return_value = mock_libtmux_session
        mock_server_prop.return_value = mock_server

        result = TmuxManager().create_session(
            "galaxy-fix-x", session_config, temp_dir, "galaxy", "fix/x"
        )

        assert isinstance(result, TmuxSessionInfo)
        assert result.working_directory == "/tmp/test"
        assert result.attached is False

        first_window = mock_libtmux_session.active_window
        first_window.rename_window.assert_called_once_with("code:editor")
        first_window.active_pane.send_keys.assert_has_calls([
            call("source .venv/bin/activate", enter=True),
            call("export APP_ENV=dev", enter=True),
            call("clear", enter=True),
            call("vim fix/x", enter=True),
        ])
        first_window.split.assert_called_once_with(start_directory=str(temp_dir))
        first_window.select_layout.assert_called_with("tiled")
        assert first_window.split.return_value.send_keys.call_count == 3

        mock_libtmux_session.new_window.assert_called_once_with(
            window_name="code:docs",
            start_directory=str(temp_dir / "docs"),
            attach=False,
        )

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_create_session_libtmux_failure(self, mock_server_prop, session_config, temp_dir):
        mock_server = MagicMock()
        mock_server.has_session.return_value = False
        mock_server.new_session.side_effect = libtmux.exc.LibTmuxException("no server")
        mock_server_prop.return_value = mock_server

        with pytest.raises(TmuxError, match="no server"):
            TmuxManager().create_session("s", session_config, temp_dir, "galaxy", "x")

    @patch.object(TmuxManager, 'server', new_callable=PropertyMock)
    def test_kill_session(self, mock_server_prop):
        session = MagicMock()
        mock_server = MagicMock()
        mock_server.has_session.return_value = True
        mock_server.sessions.filter.return_value = [session]
        mock_server_prop.return_value = mock_server

        TmuxManager().kill_session("galaxy-x")

        mock_server.sessions.filter.assert_called_once_with(session_name="galaxy-x")
        session.kill.assert_called_once()

    def test_kill_session_not_found(self):
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=False):
            with pytest.raises(TmuxSessionNotFoundError):
                manager.kill_session("missing")


class TestAttach:
    """Tests for attaching to sessions."""

    @patch("subprocess.run")
    def test_attach_session_not_found(self, mock_run, temp_dir):
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=False):
            with pytest.raises(TmuxSessionNotFoundError, match="ghwt sync --sessions"):
                manager.attach("missing", temp_dir)

        mock_run.assert_not_called()

    @patch("subprocess.run")
    def test_attach_outside_tmux(self, mock_run, temp_dir, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=True):
            manager.attach("galaxy-x", temp_dir)

        mock_run.assert_called_once_with(["tmux", "attach-session", "-t", "galaxy-x"], check=True)

    @patch("subprocess.run")
    def test_attach_inside_tmux_switches(self, mock_run, temp_dir, monkeypatch):
        monkeypatch.setenv("TMUX", "/tmp/tmux-1000/default,1,0")
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=True):
            manager.attach("galaxy-x", temp_dir)

        mock_run.assert_called_once_with(["tmux", "switch-client", "-t", "galaxy-x"], check=True)

    @patch("ghwt.core.tmux_manager.shutil.which", return_value="/usr/bin/wezterm")
    @patch("ghwt.core.tmux_manager.subprocess.Popen")
    def test_attach_in_wezterm(self, mock_popen, mock_which, temp_dir):
        manager = TmuxManager(TerminalUI.WEZTERM)

        with patch.object(manager, 'session_exists', return_value=True):
            manager.attach("galaxy-x", temp_dir)

        args = mock_popen.call_args[0][0]
        assert args[:4] == ["wezterm", "start", "--workspace", "galaxy-x"]
        assert args[-4:] == ["tmux", "attach-session", "-t", "galaxy-x"]

    @patch("subprocess.run", side_effect=subprocess.CalledProcessError(1, ["tmux"]))
    def test_attach_tmux_failure_is_tmux_error(self, mock_run, temp_dir, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=True):
            with pytest.raises(TmuxError, match="exited with 1"):
                manager.attach("galaxy-x", temp_dir)

    @patch("subprocess.run", side_effect=FileNotFoundError("tmux"))
    def test_attach_tmux_missing_is_tmux_error(self, mock_run, temp_dir, monkeypatch):
        monkeypatch.delenv("TMUX", raising=False)
        manager = TmuxManager()

        with patch.object(manager, 'session_exists', return_value=True):
            with pytest.raises(TmuxError, match="Failed to attach"):
                manager.attach("galaxy-x", temp_dir)

    @patch("ghwt.core.tmux_manager.shutil.which", return_value="/usr/bin/wezterm")
    @patch("ghwt.core.tmux_manager.subprocess.Popen", side_effect=PermissionError("denied"))
    def test_attach_terminal_launch_failure_is_tmux_error(self, mock_popen, mock_which, temp_dir):
        manager = TmuxManager(TerminalUI.WEZTERM)

        with patch.object(manager, 'session_exists', return_value=True):
            with pytest.raises(TmuxError, match="denied"):
                manager.attach("galaxy-x", temp_dir)


class TestLaunchSession:
    """Tests for launch_session."""

    def test_no_config(self, config, temp_dir):
        manager = MagicMock()

        assert launch_session(config, "galaxy", "x", "galaxy-x", temp_dir, manager) is None
        manager.create_session.assert_not_called()

    def test_with_config(self, config, temp_dir):
        config_dir = config.expanded_projects_root / "terminal-session-config" / "galaxy"
        config_dir.mkdir(parents=True)
        (config_dir / ".ghwt-session.yml").write_text("name: dev\nwindows:\n  - name: shell\n")
        manager = MagicMock()

        launch_session(config, "galaxy", "fix/x", "galaxy-fix-x", temp_dir, manager)

        name, session_config, path, project, branch = manager.create_session.call_args[0]
        assert (name, path, project, branch) == ("galaxy-fix-x", temp_dir, "galaxy", "fix/x")
        assert session_config.tabs[0].windows[0].name == "shell"
