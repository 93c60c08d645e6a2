"""Shelf context for locating state directories and canonicalizing paths."""

from pathlib import Path
from typing import Optional, Union
import os

import platformdirs

from .config import ShelfConfig, load_config
from .constants import (
    APP_AUTHOR,
    APP_NAME,
    CONFIG_DIR_ENV,
    CONFIG_FILE,
    DATA_DIR_ENV,
    LOCKS_DIR,
    OBJECTS_DIR,
    STORE_FILE,
)


def default_data_dir() -> Path:
    """Get the data directory (SHELF_DATA_DIR or the platform default)."""
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_data_dir(APP_NAME, APP_AUTHOR))


def default_config_dir() -> Path:
    """Get the configuration directory (SHELF_CONFIG_DIR or the platform default)."""
    override = os.environ.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR))


def canonicalize(path: Union[str, Path]) -> str:
    """Canonical absolute POSIX form of a path.

    Expands ``~``, makes the path absolute and resolves symlinks and ``..``
    for the parts that exist. Works for paths that no longer exist, so a
    deleted file still maps to its tracked entry.
    """
    p = Path(path).expanduser()
    if not p.is_absolute():
        p = Path.cwd() / p
    return p.resolve(strict=False).as_posix()


class ShelfContext:
    """Locations of the store, objects, locks and configuration.

    One context is created per invocation and passed to every component;
    there is no global store handle.
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        config_dir: Optional[Path] = None,
        config: Optional[ShelfConfig] = None,
    ):
        self.data_dir = Path(data_dir) if data_dir else default_data_dir()
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self._config: Optional[ShelfConfig] = config

    @property
    def store_path(self) -> Path:
        """Get path to the tracked-entry database."""
        return self.data_dir / STORE_FILE

    @property
    def objects_dir(self) -> Path:
        """Get path to the baseline object store."""
        return self.data_dir / OBJECTS_DIR

    @property
    def locks_dir(self) -> Path:
        """Get path to per-entry lock files."""
        return self.data_dir / LOCKS_DIR

    @property
    def config_path(self) -> Path:
        """Get path to config file."""
        return self.config_dir / CONFIG_FILE

    @property
    def config(self) -> ShelfConfig:
        """Get the configuration (memoized)."""
        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    @property
    def scan_root(self) -> Path:
        """Directory suggest scans by default."""
        root = self.config.scan_root
        return Path(root).expanduser() if root else Path.home()

    def ensure_dirs(self) -> None:
        """Create the data directory layout."""
        for d in (self.data_dir, self.objects_dir, self.locks_dir):
            d.mkdir(parents=True, exist_ok=True)
