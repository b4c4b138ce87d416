"""Context menu entries for AppImages in file managers."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from .config import config_home as default_config_home
from .config import data_home as default_data_home

log = logging.getLogger(__name__)

THUNAR_ACTION_UNIQUE_ID = "1573903056061608-1"


def gnome_action(executable) -> str:
    """File manager action entry used by GNOME file managers."""
    return (
        "[Desktop Entry]\n"
        "Type=Action\n"
        "Name=Update\n"
        "Icon=terminal\n"
        "TargetLocation=true\n"
        "TargetToolbar=true\n"
        "TargetContext=true\n"
        "MimeType=application/vnd.appimage;\n"
        "Capabilities=Writable\n"
        "Profiles=directory;\n"
        "\n"
        "[X-Action-Profile directory]\n"
        f"Exec={executable} update %f\n"
    )


def kde_service_menu(executable) -> str:
    """Service menu entry used by KDE file managers."""
    return (
        "[Desktop Entry]\n"
        "Type=Service\n"
        "X-KDE-ServiceTypes=KonqPopupMenu/Plugin\n"
        "MimeType=application/vnd.appimage;\n"
        "Actions=AppImageExecutable;AppImageUpdate;\n"
        "\n"
        "[Desktop Action AppImageUpdate]\n"
        "TryExec=AppImageUpdate\n"
        "Exec=konsole -e AppImageUpdate %f\n"
        "Icon=utilities-terminal\n"
        "Name=Update\n"
        "Comment=Update the AppImage\n"
        "\n"
        "[Desktop Action AppImageExecutable]\n"
        f"Exec={executable} update %f\n"
        "Icon=utilities-terminal\n"
        "Name=Make executable\n"
    )


def thunar_action(executable) -> str:
    """Custom action element for Thunar's uca.xml."""
    return (
        "<action>\n"
        "    <icon>terminal</icon>\n"
        "    <name>Update</name>\n"
        f"    <unique-id>{THUNAR_ACTION_UNIQUE_ID}</unique-id>\n"
        f"    <command>{executable} %f</command>\n"
        "    <description>Update the AppImage</description>\n"
        "    <patterns>*.AppImage;*.appimage</patterns>\n"
        "    <other-files/>\n"
        "    <directories/>\n"
        "</action>"
    )


def _thunar_document(executable) -> str:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<actions>\n"
        f"{thunar_action(executable)}\n"
        "</actions>\n"
    )


def merge_thunar_uca(existing: str, executable) -> str:
    """Return existing uca.xml text with our action added after <actions>.

    Text that already holds our action comes back unchanged.
    """
    if THUNAR_ACTION_UNIQUE_ID in existing:
        return existing
    lines = existing.splitlines()
    for index, line in enumerate(lines):
        if line.strip() == "<actions>":
            head, tail = lines[: index + 1], lines[index + 1 :]
            break
    else:
        raise ValueError("uca.xml has no <actions> element")
    merged = head + [thunar_action(executable)] + tail
    return "".join(line + "\n" for line in merged)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    os.chmod(path, 0o644)
    return path


def install_context_menus(executable=None, data_home=None, config_home=None) -> list[Path]:
    """Install context menu entries for GNOME, KDE and Thunar; return the files written."""
    executable = executable or os.path.abspath(sys.argv[0])
    data = Path(data_home) if data_home is not None else default_data_home()
    config = Path(config_home) if config_home is not None else default_config_home()
    written = []

    for path, text in (
        (data / "file-manager" / "actions" / "appimaged.desktop", gnome_action(executable)),
        (data / "kservices5" / "ServiceMenus" / "appimaged.desktop", kde_service_menu(executable)),
    ):
        try:
            written.append(_write(path, text))
        except OSError as exc:
            log.error("filemanager: %s", exc)

    uca = config / "Thunar" / "uca.xml"
    try:
        if uca.exists():
            existing = uca.read_text(encoding="utf-8", errors="replace")
            text = merge_thunar_uca(existing, executable)
            if text == existing:
                return written
        else:
            text = _thunar_document(executable)
        written.append(_write(uca, text))
    except (OSError, ValueError) as exc:
        log.error("filemanager: %s", exc)
    return written