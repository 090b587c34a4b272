from __future__ import annotations

import logging
import os
from pathlib import Path

from platformdirs import PlatformDirs

logger = logging.getLogger(__name__)

APP_NAME = "Reliquary"

# Environment variable override (useful for tests and power users)
ENV_SAVE_DIR = "RELIQUARY_SAVE_DIR"


def default_save_root(app_name: str = APP_NAME) -> Path:
    """Return the directory savegames live in when none is configured.

    Linux:   ~/.local/share/<app_name>/saves (or $XDG_DATA_HOME/<app_name>/saves)
    macOS:   ~/Library/Application Support/<app_name>/saves
    Windows: %LOCALAPPDATA%\\<app_name>\\saves

    The RELIQUARY_SAVE_DIR environment variable takes precedence.
    """
    override = os.getenv(ENV_SAVE_DIR)
    if override:
        return Path(override).expanduser().resolve()
    dirs = PlatformDirs(appname=app_name, appauthor=False)
    return Path(dirs.user_data_dir) / "saves"


def ensure_dir(path: Path) -> Path:
    """Create the directory if it doesn't exist. Log and raise on failure."""
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create directory '%s': %s", path, exc)
        raise
    return path
