"""File path resolution using platformdirs.

  macOS: ~/Library/Application Support/voiceops/
  Linux: ~/.local/share/voiceops/
  Windows: %LOCALAPPDATA%/voiceops/
"""

from pathlib import Path

import platformdirs

APP_NAME = "voiceops"


def get_data_dir() -> Path:
    """Return the directory for persistent data (DB, key file)."""
    return Path(platformdirs.user_data_dir(APP_NAME, appauthor=False))


def get_config_dir() -> Path:
    """Return the directory searched for voiceops.yaml."""
    return Path(platformdirs.user_config_dir(APP_NAME, appauthor=False))


def get_default_db_path() -> Path:
    """Return the default SQLite database file path."""
    data = get_data_dir()
    data.mkdir(parents=True, exist_ok=True)
    return data / "voiceops.db"
