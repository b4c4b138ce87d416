"""Reading, rewriting and writing desktop files for integrated AppImages."""

from __future__ import annotations

import logging
import os
import shutil
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from .config import EXEC_LOCATION_KEY, UPDATE_INFORMATION_KEY

log = logging.getLogger(__name__)

MAIN_SECTION = "Desktop Entry"
ACTION_PREFIX = "Desktop Action "

# Time given to external thumbnailers before the desktop file is written.
THUMBNAILER_GRACE_SECONDS = 1.0

# Commands whose presence changes which actions are offered.
_OPTIONAL_COMMANDS = ("gio", "kioclient", "xdg-open", "firejail")

_FULLWIDTH_SEMICOLON = "\uff1b"

_FIREJAIL_ACTIONS = (
    ("Firejail", "Run in Firejail", ""),
    ("FirejailNoNetwork", "Run in Firejail Without Network Access", "--net=none "),
    ("FirejailPrivate", "Run in Private Firejail Sandbox", "--private "),
    ("FirejailOverlayTmpfs", "Run in Firejail with Temporary Overlay Filesystem", "--overlay-tmpfs "),
)


@dataclass
class DesktopEntry:
    """An ordered collection of sections, each an ordered mapping of keys to values."""

    sections: dict[str, dict[str, str]] = field(default_factory=dict)

    @classmethod
    def parse(cls, text) -> "DesktopEntry":
        """Parse desktop file text; comments and lines outside sections are dropped."""
        if isinstance(text, bytes):
            text = text.decode("utf-8", "replace")
        entry = cls()
        current: dict[str, str] | None = None
        for raw in text.splitlines():
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("[") and line.endswith("]"):
                current = entry.sections.setdefault(line[1:-1].strip(), {})
                continue
            if current is None:
                continue
            key, sep, value = line.partition("=")
            if sep:
                current[key.strip()] = value.strip()
        return entry

    def get(self, section: str, key: str, default: str = "") -> str:
        return self.sections.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value) -> None:
        self.sections.setdefault(section, {})[key] = str(value)

    def has(self, section: str, key: str) -> bool:
        return key in self.sections.get(section, {})

    def dumps(self) -> str:
        blocks = []
        for name, values in self.sections.items():
            lines = [f"[{name}]"] + [f"{key}={value}" for key, value in values.items()]
            blocks.append("\n".join(lines) + "\n")
        return "\n".join(blocks)

    def _copy(self) -> "DesktopEntry":
        return DesktopEntry({name: dict(values) for name, values in self.sections.items()})


def _exec_arguments(command: str) -> list[str]:
    """Arguments that follow the program in an Exec= value."""
    command = command.strip()
    if command.startswith('"'):
        end = command.find('"', 1)
        rest = command[end + 1 :] if end >= 0 else ""
    else:
        _, _, rest = command.partition(" ")
    return rest.split()


def _split_actions(value: str) -> list[str]:
    value = value.replace(_FULLWIDTH_SEMICOLON, ";")
    return [action.strip() for action in value.split(";") if action.strip()]


def _rewrite_action_exec(command: str, launcher: str, path: str) -> str:
    if command.startswith('"') and '"' in command[1:]:
        command = command[1 : command.index('"', 1)]
    rest = command.split(" ")[1:]
    return f'{launcher} wrap "{path}" ' + " ".join(rest)


def build_desktop_entry(
    source,
    appimage,
    launcher: str,
    available_commands: Iterable[str] = (),
    writable: bool = False,
) -> DesktopEntry:
    """Return the desktop entry to install for appimage, based on its own entry."""
    base = source if isinstance(source, DesktopEntry) else DesktopEntry.parse(source)
    entry = base._copy()
    commands = set(available_commands)
    path = appimage.path
    folder = os.path.dirname(path)

    if not entry.has(MAIN_SECTION, "Name"):
        entry.set(MAIN_SECTION, "Name", appimage.name)
    if not entry.has(MAIN_SECTION, "Type"):
        entry.set(MAIN_SECTION, "Type", "Application")
    entry.set(MAIN_SECTION, "Icon", str(appimage.thumbnail_filepath))

    args = _exec_arguments(entry.get(MAIN_SECTION, "Exec"))
    extra = " " + " ".join(args) if args else ""
    entry.set(MAIN_SECTION, "Exec", f'{launcher} wrap "{path}"{extra}')
    entry.set(MAIN_SECTION, EXEC_LOCATION_KEY, path)
    entry.set(MAIN_SECTION, "TryExec", launcher)
    entry.set(MAIN_SECTION, "Comment", path)
    entry.set(MAIN_SECTION, "X-AppImage-Identifier", appimage.identifier)
    if appimage.update_information:
        entry.set(MAIN_SECTION, UPDATE_INFORMATION_KEY, f'"{appimage.update_information}"')

    actions = _split_actions(entry.get(MAIN_SECTION, "Actions"))
    for action in actions:
        section = ACTION_PREFIX + action
        command = entry.get(section, "Exec")
        if command:
            entry.set(section, "Exec", _rewrite_action_exec(command, launcher, path))

    def add_action(key: str, name: str, command: str) -> None:
        actions.append(key)
        entry.set(ACTION_PREFIX + key, "Name", name)
        entry.set(ACTION_PREFIX + key, "Exec", command)

    if writable:
        if "gio" in commands:
            trash = f'gio trash "{path}"'
        elif "kioclient" in commands:
            trash = f'kioclient move "{path}" trash:/'
        else:
            trash = f'mv "{path}" ~/.local/share/Trash/'
        add_action("Trash", "Move to Trash", trash)
        add_action("OpenPortableHome", "Open Portable Home in File Manager", f'xdg-open "{path}.home"')
        add_action("CreatePortableHome", "Create Portable Home", f'mkdir -p "{path}.home"')

    if appimage.type > 1:
        if writable:
            squashfs_root = os.path.join(folder, "squashfs-root")
            extract = (
                f"bash -c \"cd '{folder}' && '{path}' --appimage-extract"
                f" && xdg-open '{squashfs_root}'\""
            )
        else:
            extract = (
                f"bash -c \"cd ~ && '{path}' --appimage-extract && xdg-open ~/squashfs-root\""
            )
        add_action("Extract", "Extract to AppDir", extract)

    if appimage.update_information:
        add_action("Update", "Update", f'{launcher} update "{path}"')

    if "xdg-open" in commands:
        add_action("Show", "Open Containing Folder", f'xdg-open "{folder}"')

    if "firejail" in commands:
        for key, name, option in _FIREJAIL_ACTIONS:
            add_action(
                key,
                name,
                "firejail --env=DESKTOPINTEGRATION=appimaged --noprofile "
                f'{option}--appimage "{path}"',
            )

    entry.set(MAIN_SECTION, "Actions", ";".join(actions))
    return entry


def fix_desktop_file(data):
    """Drop backtick quoting around values and restore full-width semicolons."""
    if isinstance(data, str):
        return fix_desktop_file(data.encode("utf-8")).decode("utf-8")
    if b"=`" in data:
        data = data.replace(b"=`", b"=").replace(b"`\n", b"\n")
    return data.replace(_FULLWIDTH_SEMICOLON.encode("utf-8"), b";")


def is_writable(path) -> bool:
    return os.access(path, os.W_OK)


def write_desktop_file(appimage, launcher: str | None = None) -> Path:
    """Write the desktop file for appimage and return where it went."""
    launcher = launcher or os.path.abspath(sys.argv[0])
    source = appimage.read_desktop_entry()
    # Give external thumbnailers a moment before the menu entry appears.
    time.sleep(THUMBNAILER_GRACE_SECONDS)
    commands = {command for command in _OPTIONAL_COMMANDS if shutil.which(command)}
    entry = build_desktop_entry(source, appimage, launcher, commands, is_writable(appimage.path))
    target = Path(appimage.desktop_filepath)
    log.debug("desktop: Saving to %s", target)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.unlink(missing_ok=True)
    target.write_bytes(fix_desktop_file(entry.dumps().encode("utf-8")))
    return target