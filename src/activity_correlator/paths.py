"""Helpers for locating application directories."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs


APP_NAME = "ActivityCorrelator"
APP_AUTHOR = "ActivityCorrelator"


def _dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=True)


def get_config_dir() -> Path:
    """Return the directory holding user-editable configuration."""
    path = Path(_dirs().user_config_path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_categories_path() -> Path:
    return get_config_dir() / "categories.json"
