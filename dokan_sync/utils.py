"""Path helpers for dokan_sync."""

import os
from pathlib import Path


def get_dokan_home() -> Path:
    """Return the dokan_sync data directory.

    ``DOKAN_DATA_DIR`` overrides the default ``~/.dokan``.
    """
    override = os.environ.get("DOKAN_DATA_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".dokan"


def get_default_db_path() -> Path:
    """Default SQLite file for the local cache and mutation queue."""
    return get_dokan_home() / "offline.db"
