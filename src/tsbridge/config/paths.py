"""Where tsbridge looks for config.yaml.

    user     %APPDATA%\\tsbridge on Windows, else $XDG_CONFIG_HOME/tsbridge
             or ~/.config/tsbridge
    project  <project root>/.tsbridge
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_NAME = "tsbridge"
PROJECT_DIR = ".tsbridge"
CONFIG_FILENAME = "config.yaml"


def _user_config_dir() -> Path | None:
    if sys.platform == "win32":
        base = os.environ.get("APPDATA")
        return Path(base) / APP_NAME if base else None
    base = os.environ.get("XDG_CONFIG_HOME")
    return Path(base) / APP_NAME if base else Path.home() / ".config" / APP_NAME


def get_user_config_path() -> Path | None:
    """User-level config file, or None when there is no place for one.

    The file itself may not exist.
    """
    directory = _user_config_dir()
    return directory / CONFIG_FILENAME if directory else None


def get_project_config_path(project_root: str) -> Path:
    """Project-level config file (may not exist)."""
    return Path(project_root) / PROJECT_DIR / CONFIG_FILENAME


def get_config_paths(project_root: str | None = None) -> list[Path]:
    """Config files to merge, lowest priority first."""
    candidates = [get_user_config_path()]
    if project_root:
        candidates.append(get_project_config_path(project_root))
    return [path for path in candidates if path is not None]
