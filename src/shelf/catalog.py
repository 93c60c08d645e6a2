"""Well-known dotfile locations, grouped by category.

Suggest ranks files found here ahead of plain scan hits.
"""

from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

CATALOG: Dict[str, List[str]] = {
    "Shell": [
        ".bashrc",
        ".zshrc",
        ".profile",
        ".bash_profile",
        ".bash_aliases",
        ".zprofile",
        ".config/fish/config.fish",
        ".tcshrc",
        ".cshrc",
        ".kshrc",
        ".config/xonsh/rc.xsh",
        ".config/elvish/rc.elv",
        ".config/nushell/config.nu",
        ".inputrc",
    ],
    "VCS": [
        ".gitconfig",
        ".gitignore_global",
        ".gitmessage",
        ".gitattributes",
        ".hgrc",
        ".subversion/config",
        ".subversion/servers",
        ".p4config",
        ".cvsrc",
    ],
    "Tmux": [".tmux.conf", ".config/tmux/tmux.conf"],
    "SSH": [".ssh/config"],
    "X11": [".xinitrc", ".Xresources", ".xprofile", ".Xmodmap"],
    "Wayland": [
        ".config/waybar/config",
        ".config/waybar/style.css",
        ".config/river/init",
        ".config/hypr/hyprland.conf",
        ".config/foot/foot.ini",
        ".config/mako/config",
        ".config/kanshi/config",
        ".config/wofi/config",
        ".config/weston.ini",
    ],
    "Editors": [
        ".vimrc",
        ".config/nvim/init.vim",
        ".config/nvim/init.lua",
        ".emacs",
        ".emacs.d/init.el",
        ".doom.d/config.el",
        ".config/Code/User/settings.json",
        ".ideavimrc",
        ".nanorc",
        ".config/helix/config.toml",
        ".config/geany/geany.conf",
    ],
    "Desktop WM": [
        ".config/i3/config",
        ".config/sway/config",
        ".config/alacritty/alacritty.yml",
        ".config/kitty/kitty.conf",
    ],
}


def entries() -> Iterator[Tuple[str, str]]:
    """Yield (category, home-relative path) pairs."""
    for category, files in CATALOG.items():
        for rel in files:
            yield category, rel


def category_of(path: Path, home: Path) -> Optional[str]:
    """Return the catalog category for a path under home, if any."""
    try:
        rel = Path(path).relative_to(home).as_posix()
    except ValueError:
        return None
    for category, known in entries():
        if known == rel:
            return category
    return None


def existing(home: Path) -> List[Path]:
    """Catalog files that exist as regular files (symlinks excluded) under home."""
    found = []
    for _, rel in entries():
        path = home / rel
        if path.is_file() and not path.is_symlink():
            found.append(path)
    return found
