"""Updating AppImages by launching an integrated updater AppImage."""

from __future__ import annotations

import logging
import os
import subprocess

from .appimage import find_most_recent_appimage
from .notification import send_notification

log = logging.getLogger(__name__)

UPDATER_UPDATE_INFORMATION = (
    "gh-releases-zsync|antony-jr|AppImageUpdater|latest|AppImageUpdater*-x86_64.AppImage.zsync"
)
LEGACY_UPDATER_UPDATE_INFORMATION = (
    "gh-releases-zsync|antony-jr|AppImageUpdater|continuous|AppImageUpdater*-x86_64.AppImage.zsync"
)


def find_updater(applications_dir=None) -> str | None:
    """Most recent integrated updater, preferring the current release channel."""
    return find_most_recent_appimage(
        UPDATER_UPDATE_INFORMATION, applications_dir
    ) or find_most_recent_appimage(LEGACY_UPDATER_UPDATE_INFORMATION, applications_dir)


def updater_command(updater: str, path: str) -> list[str]:
    return [updater, "-n", "-d", path]


def run_update(path: str, applications_dir=None) -> int | None:
    """Run the updater on path; return its exit code, or None if there is none."""
    updater = find_updater(applications_dir)
    if updater is None:
        send_notification(
            "AppImageUpdater missing",
            "Please download the AppImageUpdater\nAppImage and try again",
            30000,
        )
        return None
    os.environ.pop("INVOCATION_ID", None)  # set by systemd; must not leak into the updater
    try:
        result = subprocess.run(updater_command(updater, path), check=False)
    except OSError as exc:
        log.error("update: %s", exc)
        return None
    if result.returncode != 0:
        log.error("update: %s exited with %d", updater, result.returncode)
    return result.returncode