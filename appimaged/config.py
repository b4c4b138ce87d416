"""Locations and run-time settings of the daemon."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

# Key in the desktop files written by the daemon that records where the
# AppImage lives, since Exec= is rewritten to go through the wrapper.
EXEC_LOCATION_KEY = "X-ExecLocation"
UPDATE_INFORMATION_KEY = "X-AppImage-UpdateInformation"


def _home() -> Path:
    return Path(os.environ.get("HOME") or Path.home())


def _xdg(variable: str, default: str) -> Path:
    value = os.environ.get(variable, "")
    if value and os.path.isabs(value):
        return Path(value)
    return _home() / default


def data_home() -> Path:
    """Return $XDG_DATA_HOME, defaulting to ~/.local/share."""
    return _xdg("XDG_DATA_HOME", ".local/share")


def cache_home() -> Path:
    """Return $XDG_CACHE_HOME, defaulting to ~/.cache."""
    return _xdg("XDG_CACHE_HOME", ".cache")


def config_home() -> Path:
    """Return $XDG_CONFIG_HOME, defaulting to ~/.config."""
    return _xdg("XDG_CONFIG_HOME", ".config")


def applications_dir() -> Path:
    """Directory holding the user's desktop files."""
    return data_home() / "applications"


def thumbnails_dir() -> Path:
    """Directory for normal-sized thumbnails."""
    return cache_home() / "thumbnails" / "normal"


def _user_dir(name: str, default: str) -> Path:
    variable = f"XDG_{name}_DIR"
    value = os.environ.get(variable)
    if value:
        return Path(value.replace("$HOME", str(_home())))
    try:
        text = (config_home() / "user-dirs.dirs").read_text(encoding="utf-8")
    except OSError:
        text = ""
    for line in text.splitlines():
        key, sep, raw = line.strip().partition("=")
        if sep and key == variable:
            raw = raw.strip().strip('"')
            return Path(raw.replace("$HOME", str(_home())))
    return _home() / default


def candidate_directories() -> list[str]:
    """Directories that may hold AppImages, $PATH entries first."""
    home = _home()
    path_dirs = [entry for entry in os.environ.get("PATH", "").split(":") if entry]
    return path_dirs + [
        str(_user_dir("DOWNLOAD", "Downloads")),
        str(_user_dir("DESKTOP", "Desktop")),
        str(home / ".local" / "bin"),
        str(home / "bin"),
        str(home / "Applications"),
        "/opt",
        "/usr/local/bin",
    ]


@dataclass
class Settings:
    """Options the daemon runs with."""

    verbose: bool = False
    overwrite: bool = False
    clean: bool = True
    quiet: bool = False
    no_zeroconf: bool = False
    data_home: Path = field(default_factory=lambda: data_home())
    config_home: Path = field(default_factory=lambda: config_home())
    thumbnails_dir: Path = field(default_factory=lambda: thumbnails_dir())

    @property
    def applications_dir(self) -> Path:
        return self.data_home / "applications"