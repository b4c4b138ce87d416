"""Desktop notifications over the session bus."""

from __future__ import annotations

import logging
import shutil
import subprocess

log = logging.getLogger(__name__)

_DEST = "org.freedesktop.Notifications"
_OBJECT = "/org/freedesktop/Notifications"


def _gvariant_string(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def notify_command(title: str, body: str, timeout_ms: int) -> list[str]:
    """Command line that calls Notify on the notification daemon.

    A timeout of 0 means the notification never expires; -1 leaves it to the server.
    """
    return [
        "gdbus", "call", "--session",
        "--dest", _DEST,
        "--object-path", _OBJECT,
        "--method", f"{_DEST}.Notify",
        _gvariant_string(""),
        "0",
        _gvariant_string(""),
        _gvariant_string(title),
        _gvariant_string(body),
        "[]",
        "{}",
        str(int(timeout_ms)),
    ]


def send_notification(title: str, body: str, timeout_ms: int) -> bool:
    """Show a notification; return whether the daemon accepted it."""
    log.info("Desktop notification: %s %s", title, body)
    if shutil.which("gdbus") is None:
        log.error("notification: gdbus is not available")
        return False
    try:
        result = subprocess.run(
            notify_command(title, body, timeout_ms), capture_output=True, check=False
        )
    except OSError as exc:
        log.error("notification: %s", exc)
        return False
    if result.returncode != 0:
        log.error("notification: %s", result.stderr.decode("utf-8", "replace").strip())
        log.error("Is a notification daemon installed, and are you running on a supported system?")
        return False
    return True


def send_error_notification(title: str, body: str) -> bool:
    """Show an error notification that does not expire."""
    log.info("----------------------------")
    log.info("Notification:")
    log.info(title)
    log.info(body)
    return send_notification(title, body, 0)