"""Mounted file systems that may hold AppImages."""

from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Iterable

from .notification import send_error_notification

log = logging.getLogger(__name__)

MOUNTINFO = "/proc/self/mountinfo"
_EXCLUDED_PREFIXES = ("/sys", "/tmp", "/proc")
_OCTAL = re.compile(r"\\([0-7]{3})")


def _unescape(text: str) -> str:
    return _OCTAL.sub(lambda match: chr(int(match.group(1), 8)), text)


def _options(text: str) -> dict[str, str]:
    result = {}
    for item in text.split(","):
        if item:
            key, _, value = item.partition("=")
            result[key] = value
    return result


@dataclass(frozen=True)
class Mount:
    """One line of a mountinfo file."""

    mount_point: str
    root: str = "/"
    fstype: str = ""
    source: str = ""
    options: dict[str, str] = field(default_factory=dict)
    super_options: dict[str, str] = field(default_factory=dict)


def parse_mountinfo(text: str) -> list[Mount]:
    """Parse the contents of a mountinfo file; malformed lines are skipped."""
    mounts = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 10 or "-" not in fields[6:]:
            continue
        separator = fields.index("-", 6)
        tail = fields[separator + 1 :]
        if len(tail) < 3:
            continue
        mounts.append(
            Mount(
                mount_point=_unescape(fields[4]),
                root=_unescape(fields[3]),
                fstype=tail[0],
                source=_unescape(tail[1]),
                options=_options(fields[5]),
                super_options=_options(tail[2]),
            )
        )
    return mounts


def read_mounts(path=MOUNTINFO) -> list[Mount]:
    """Mounts listed in path, or none if it cannot be read."""
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            return parse_mountinfo(handle.read())
    except OSError as exc:
        log.warning("mounts: %s", exc)
        return []


def mount_application_dirs(mounts: Iterable[Mount]) -> list[str]:
    """Applications directories at the top of mounted file systems."""
    result: list[str] = []
    for mount in mounts:
        log.debug("main: MountPoint %s", mount.mount_point)
        if mount.mount_point.startswith(_EXCLUDED_PREFIXES):
            continue
        applications = mount.mount_point.rstrip("/") + "/Applications"
        if not os.path.exists(applications):
            continue
        if "showexec" in mount.super_options:
            threading.Thread(
                target=send_error_notification,
                args=(
                    "UDisks showexec issue",
                    f"Applications cannot run from \n{mount.mount_point}. \n"
                    "See \nhttps://github.com/storaged-project/udisks/issues/707",
                ),
                daemon=True,
            ).start()
            log.warning("mounts: %s is mounted with showexec", mount.mount_point)
            continue
        if applications not in result:
            result.append(applications)
    return result


def existing_directories(candidates: Iterable[str]) -> list[str]:
    """The candidates that exist, in order."""
    return [directory for directory in candidates if directory and os.path.exists(directory)]