"""Shelf configuration (config.yaml in the user config directory)."""

from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import DEFAULT_REMOTE_REF
from .errors import ConfigError, ShelfIOError
from .utils import atomic_write_text


class ShelfConfig(BaseModel):
    """User configuration.

    Example config.yaml:

        scan_root: ~/
        max_file_size: 1048576
        skip_directories: [Downloads, .cache]
        skip_files: ["*.log"]
        remote: ~/dotfiles-remote
        remote_ref: main
        generator: llm -m gpt-4o-mini
    """

    scan_root: Optional[str] = None  # Defaults to the home directory
    max_file_size: int = 1024 * 1024
    max_depth: int = 6
    skip_directories: List[str] = Field(default_factory=list)
    skip_files: List[str] = Field(default_factory=list)
    ignore: List[str] = Field(default_factory=list)  # Extra gitignore-style patterns

    remote: Optional[str] = None
    remote_ref: str = DEFAULT_REMOTE_REF
    fetch_retries: int = 3

    lock_timeout: float = 10.0
    workers: int = 4

    # Command that drafts commit messages and reviews (prompt on stdin)
    generator: Optional[str] = None
    generator_timeout: float = 120.0


def load_config(path: Path) -> ShelfConfig:
    """Load configuration, falling back to defaults when the file is absent.

    Raises:
        ConfigError: If the file exists but cannot be parsed or validated
    """
    if not path.exists():
        return ShelfConfig()

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(str(path), str(e)) from e

    if not isinstance(data, dict):
        raise ConfigError(str(path), "expected a mapping at the top level")

    try:
        return ShelfConfig(**data)
    except ValidationError as e:
        raise ConfigError(str(path), str(e)) from e


def save_config(config: ShelfConfig, path: Path) -> None:
    """Save configuration atomically, writing only non-default settings.

    Raises:
        ShelfIOError: If the file cannot be written
    """
    text = yaml.safe_dump(config.model_dump(exclude_defaults=True), default_flow_style=False, sort_keys=False)
    try:
        atomic_write_text(path, text)
    except OSError as e:
        raise ShelfIOError(str(path), e.strerror or str(e), operation="config") from e
