"""
ghwt - git worktrees for branches and pull requests.

This package maps branch names and PR numbers to deterministic worktree
and note paths, and keeps a metadata record for each worktree in the
front-matter of its note.
"""

__version__ = "0.1.0"

from ghwt.config import Config, load_config

__all__ = [
    "__version__",
    "Config",
    "load_config",
]
