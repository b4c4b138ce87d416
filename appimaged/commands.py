"""Commands the daemon executable can be invoked with."""

from __future__ import annotations

import logging
import subprocess

from .appimage import find_most_recent_appimage, validate_update_information
from .update import run_update

log = logging.getLogger(__name__)


def _launch(command: str, args: list[str], applications_dir) -> int:
    if not args:
        print("No updateinformation supplied")
        return 1
    update_information = args[0]
    try:
        validate_update_information(update_information)
    except ValueError:
        print("Invalid updateinformation string supplied")
        return 1
    appimage = find_most_recent_appimage(update_information, applications_dir)
    if appimage is None:
        print("No AppImage found for,")
        return 1
    argv = [appimage, *args[1:]]
    if command == "run":
        try:
            subprocess.run(argv, check=False)
        except OSError as exc:
            log.error("LaunchMostRecentAppImage: %s", exc)
        return 1
    try:
        subprocess.Popen(argv)
    except OSError as exc:
        print(exc)
        return 1
    return 0


def run_command(argv, applications_dir=None) -> int | None:
    """Handle a command given as argv (without the program name).

    Returns the exit status for the process, or None when argv holds no
    command and the daemon should start instead.

    run <updateinformation>: run the most recent matching AppImage and wait.
    start <updateinformation>: start it and return immediately.
    update <path>: update the AppImage with the most recent updater.
    wrap <executable> [args...]: run it and report failures as notifications.
    """
    argv = list(argv or [])
    if not argv:
        return None
    command, *rest = argv
    if command == "wrap":
        from .wrapper import wrap

        wrap(rest)
        return 0
    if command == "update":
        if not rest:
            print("Argument missing")
            return 1
        run_update(rest[0], applications_dir)
        return 0
    if command in ("run", "start"):
        return _launch(command, rest, applications_dir)
    return None