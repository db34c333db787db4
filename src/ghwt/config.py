"""
Configuration management for ghwt.

Loads configuration from TOML files in the following priority:
1. Path specified via --config flag
2. $GHWT_CONFIG
3. .ghwtrc.toml in current directory
4. ~/.config/ghwt/config.toml
5. ~/.ghwtrc.toml

The configuration is read once per invocation and held immutably.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ghwt.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GHWT_CONFIG"


class ConfigError(Exception):
    """Raised when a configuration file cannot be read or validated."""


class TerminalMultiplexer(str, Enum):
    """Supported terminal multiplexers."""

    TMUX = "tmux"


class TerminalUI(str, Enum):
    """Terminal applications that can host a multiplexer session."""

    WEZTERM = "wezterm"
    GHOSTTY = "ghostty"
    NONE = "none"


class Config(BaseModel):
    """Main configuration model for ghwt."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    projects_root: str = Field(
        default="~/projects",
        description="Root directory for all projects (supports ~ expansion)",
    )
    repositories_dir: str = Field(
        default="repositories",
        description="Directory name for repository clones",
    )
    worktrees_dir: str = Field(
        default="worktrees",
        description="Directory name for worktrees",
    )
    vault_path: str = Field(
        default="~/notes",
        description="Path to the notes vault (supports ~ expansion)",
    )
    sync_interval: Optional[int] = Field(
        default=None,
        ge=60,
        description="Sync interval in seconds (minimum 60, unset for no auto-sync)",
    )
    default_base_branch: str = Field(
        default="dev",
        description="Base branch used for new worktrees and ahead/behind counts",
    )
    terminal_multiplexer: TerminalMultiplexer = Field(
        default=TerminalMultiplexer.TMUX,
        description="Terminal multiplexer to use for sessions",
    )
    terminal_ui: TerminalUI = Field(
        default=TerminalUI.NONE,
        description="Terminal application used to show sessions",
    )
    obsidian_vault_name: Optional[str] = Field(
        default=None,
        description="Name of the Obsidian vault for obsidian:// links",
    )
    shell_command_execute_id: Optional[str] = Field(
        default=None,
        description="Obsidian shell-commands executor id for quick actions",
    )

    @property
    def expanded_projects_root(self) -> Path:
        return expand_path(self.projects_root)

    @property
    def expanded_vault_path(self) -> Path:
        return expand_path(self.vault_path)


def expand_path(path: str) -> Path:
    """Expand a leading ``~`` in a configured path."""
    return Path(path).expanduser()


def read_config_file(path: Path) -> Config:
    """
    Read and validate one config file.

    Raises:
        ConfigError: If the file cannot be read or fails validation.
    """
    try:
        data = toml.load(path)
        return Config(**data)
    except (OSError, toml.TomlDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid config file {path}:\n{e}") from e


def config_search_paths() -> list[Path]:
    """Get the config files looked for when no path is given, highest priority first."""
    env_path = os.environ.get(CONFIG_ENV_VAR)
    paths = [Path(env_path).expanduser()] if env_path else []
    paths.extend([
        Path.cwd() / ".ghwtrc.toml",
        Path.home() / ".config" / "ghwt" / "config.toml",
        Path.home() / ".ghwtrc.toml",
    ])
    return paths


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file or use defaults.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Config instance with loaded or default values.

    Raises:
        ConfigError: If an explicitly requested config file is missing or invalid.
    """
    if config_path:
        path = Path(config_path).expanduser()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return read_config_file(path)

    for path in config_search_paths():
        if path.exists():
            try:
                config = read_config_file(path)
            except ConfigError as e:
                logger.warning(f"Skipping config file: {e}")
                continue
            logger.debug(f"Loaded config from {path}")
            return config

    return Config()


def save_config(config: Config, path: Path) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save.
        path: Path to save the config file.
    """
    data = config.model_dump(mode="json", exclude_none=True)
    atomic_write_text(path, toml.dumps(data), perms=0o644)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".config" / "ghwt" / "config.toml"
