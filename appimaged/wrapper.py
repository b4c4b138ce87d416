"""Running applications and reporting their failures as notifications."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import threading
from pathlib import Path

from .appimage import AppImage
from .config import applications_dir as default_applications_dir
from .desktop import MAIN_SECTION, DesktopEntry
from .notification import send_error_notification, send_notification

log = logging.getLogger(__name__)

_MISSING_LIBRARY = "cannot open shared object file: No such file or directory"


def describe_failure(target: str, stderr: str, appname: str | None = None) -> tuple[str, str]:
    """Summary and body of the notification for a failed launch.

    appname is the AppImage's name, or None if target is not an AppImage.
    """
    base = os.path.basename(target)
    summary = "Cannot open " + (appname or base)
    body = stderr.strip()
    if _MISSING_LIBRARY in stderr:
        parts = stderr.split(":")
        if len(parts) > 2:
            body = "Missing library " + parts[2].strip()
    if appname is not None:
        if "execv error" in stderr:
            body = base + " is defective, AppRun is missing. \nPlease ask the author to fix it."
        if "Could not load the Qt platform plugin" in stderr:
            body = (
                base
                + " is defective, could not load the Qt platform plugin. \n"
                "Please run on the command line with 'QT_DEBUG_PLUGINS=1' \n"
                "to see error messages and ask the author to fix it."
            )
    return summary, body


def find_desktop_files_pointing_to(executable: str, applications_dir=None) -> list[str]:
    """Names of desktop files whose Exec= mentions executable."""
    directory = Path(applications_dir) if applications_dir is not None else default_applications_dir()
    results = []
    for name in sorted(os.listdir(directory)):
        if not name.endswith(".desktop"):
            continue
        path = directory / name
        if path.is_symlink():
            try:
                target = directory / os.readlink(path)
            except OSError as exc:
                log.warning("Readlink error %s on file %s", exc, path)
                continue
        else:
            target = path
        try:
            text = target.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            log.warning("load error %s on file %s", exc, target)
            continue
        if executable in DesktopEntry.parse(text).get(MAIN_SECTION, "Exec"):
            results.append(name)
    return results


def validate_desktop_file(path) -> None:
    """Raise ValueError if the desktop file at path is invalid."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    entry = DesktopEntry.parse(text)
    if MAIN_SECTION not in entry.sections:
        raise ValueError(f"{path}: missing [{MAIN_SECTION}] section")
    for key in ("Type", "Name"):
        if not entry.has(MAIN_SECTION, key):
            raise ValueError(f"{path}: required key {key} is missing")
    validator = shutil.which("desktop-file-validate")
    if validator is None:
        return
    result = subprocess.run([validator, os.fspath(path)], capture_output=True, check=False)
    if result.returncode != 0:
        output = (result.stdout + result.stderr).decode("utf-8", "replace").strip()
        raise ValueError(output or f"{path}: desktop-file-validate failed")


def check_desktop_files(executable: str, applications_dir=None) -> list[tuple[str, str]]:
    """Validate desktop files pointing to executable; notify and return problems."""
    directory = Path(applications_dir) if applications_dir is not None else default_applications_dir()
    try:
        names = find_desktop_files_pointing_to(executable, directory)
    except OSError as exc:
        log.error("checkDesktopFiles: %s", exc)
        return []
    problems = []
    for name in names:
        try:
            validate_desktop_file(directory / name)
        except (ValueError, OSError) as exc:
            problems.append((name, str(exc)))
            send_error_notification("Invalid desktop file", f"{executable}\n\n{exc}")
    return problems


def wrap(argv) -> int:
    """Run argv[0] with the remaining arguments; report failures. Return its exit code."""
    argv = list(argv or [])
    if not argv:
        log.error("Argument missing")
        return 1
    target, *args = argv
    threading.Thread(target=check_desktop_files, args=(target,), daemon=True).start()

    appimage = AppImage(target)
    if appimage.valid:
        try:
            appimage.validate()
        except ValueError as exc:
            send_notification(
                appimage.name + " is not a proper AppImage",
                f"{exc}\nPlease ask the author to fix it.",
                30000,
            )

    try:
        process = subprocess.run(
            [target, *args], stdin=sys.stdin, stdout=sys.stdout, stderr=subprocess.PIPE, check=False
        )
    except (OSError, ValueError) as exc:
        log.error("cmd.Start: %s", exc)
        return 1
    if process.returncode == 0:
        return 0
    stderr = process.stderr.decode("utf-8", "replace")
    log.info("Exit Status: %d", process.returncode)
    log.info("%s", stderr)
    appname = appimage.name if appimage.valid else None
    summary, body = describe_failure(target, stderr, appname)
    send_error_notification(summary, body)
    return process.returncode