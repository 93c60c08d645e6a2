"""Track, save and sync dotfiles scattered across the filesystem."""

from .constants import SHELF_VERSION as __version__

__all__ = ["__version__"]
