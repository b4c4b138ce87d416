"""Checks that must pass before the daemon starts integrating AppImages."""

from __future__ import annotations

import getpass
import logging
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Mapping

import psutil

from .appimage import AppImage
from .config import Settings
from .notification import send_error_notification, send_notification
from .systemd import LAUNCHED_BY_SYSTEMD, check_systemd_service_running

log = logging.getLogger(__name__)

LIVE_KEYWORDS = ("casper", "live", "Live", ".iso")
TESTED_SYSTEMS = ("deepin", "clear-linux-os")
NEEDED_TOOLS = ("bsdtar", "unsquashfs", "desktop-file-validate")
OTHER_DAEMON_PATTERNS = ("appimagelauncher*",)
BINFMT_ENTRIES = (
    "/proc/sys/fs/binfmt_misc/appimage-type1",
    "/proc/sys/fs/binfmt_misc/appimage-type2",
)
OS_RELEASE_FILES = ("/etc/os-release", "/usr/lib/os-release")

_SHOWEXEC_HINT = r"""You could run the following as a workaround. USE AT YOUR OWN RISK:
+++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++
sudo su
systemctl stop udisks2
if [ -e /usr/lib/udisks/udisks-daemon ] ; then
  sed -i -e 's|showexec|\x00\x00\x00\x00\x00\x00\x00\x00|g' /usr/lib/udisks/udisks-daemon
fi
if [ -e /usr/lib/udisks2/udisksd ] ; then
  sed -i -e 's|showexec|\x00\x00\x00\x00\x00\x00\x00\x00|g' /usr/lib/udisks2/udisksd
fi
if [ -e /usr/libexec/udisks2/udisksd ] ; then
  sed -i -e 's|showexec|\x00\x00\x00\x00\x00\x00\x00\x00|g' /usr/libexec/udisks2/udisksd
fi
systemctl restart udisks2
++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++++"""


def _parse_os_release(text: str) -> dict[str, str]:
    result = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        try:
            value = " ".join(shlex.split(value))
        except ValueError:
            value = value.strip()
        result[key.strip()] = value
    return result


def read_os_release(path=None) -> dict[str, str]:
    """Fields of the os-release file, or an empty mapping if there is none."""
    candidates = [path] if path is not None else list(OS_RELEASE_FILES)
    for candidate in candidates:
        try:
            text = Path(candidate).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            log.debug("os-release: %s", exc)
            continue
        return _parse_os_release(text)
    return {}


def is_live_system(cmdline: str, os_release: Mapping[str, str], environ: Mapping[str, str]) -> bool:
    """Whether this looks like a supported Live system (or an allowed exception)."""
    if os_release.get("ID") in TESTED_SYSTEMS:
        return True
    if environ.get(LAUNCHED_BY_SYSTEMD):
        return True
    if any(keyword in cmdline for keyword in LIVE_KEYWORDS):
        return True
    return "GOCACHE" in environ


def ensure_running_from_live_system() -> bool:
    """Warn with a notification unless running on a supported Live system."""
    try:
        cmdline = Path("/proc/cmdline").read_text(encoding="utf-8", errors="replace")
    except OSError:
        cmdline = ""
    live = is_live_system(cmdline, read_os_release(), os.environ)
    if not live:
        send_notification(
            "Not running on one of the supported Live systems",
            "This configuration is currently unsupported but may still work, please give feedback.",
            -1,
        )
    return live


def check_tools(tools: Iterable[str]) -> dict[str, str]:
    """Resolve each tool on $PATH; raise RuntimeError naming the missing ones."""
    found = {}
    missing = []
    for tool in tools:
        location = shutil.which(tool)
        if location is None:
            missing.append(tool)
        else:
            found[tool] = location
    if missing:
        raise RuntimeError("required tools missing on $PATH: " + ", ".join(missing))
    return found


def exit_if_binfmt_exists(path) -> bool:
    """Try to disable a conflicting binfmt_misc entry; exit if it stays.

    Returns True if the entry was there and has been removed.
    """
    path = os.fspath(path)
    if not os.path.exists(path):
        return False
    subprocess.run(["/bin/sh", "-c", f"echo -1 | sudo tee {path}"], check=False)
    if os.path.exists(path):
        log.error("ERROR: %s exists. Please remove it by running", path)
        print("echo -1 | sudo tee", path)
        raise SystemExit(1)
    return True


def clean_desktop_files(applications_dir) -> list[Path]:
    """Delete desktop files written earlier by the daemon; return those deleted."""
    removed = []
    for path in sorted(Path(applications_dir).glob("appimagekit_*")):
        log.debug("Deleting %s", path)
        try:
            path.unlink()
        except OSError as exc:
            log.warning("main: %s", exc)
            continue
        removed.append(path)
    return removed


def other_instances(myself: str, environ: Mapping[str, str]) -> list[int]:
    """Pids of other daemon processes of the current user, started without a verb."""
    name = os.path.basename(myself)
    appimage_env = environ.get("APPIMAGE", "")
    try:
        current_user = getpass.getuser()
    except (KeyError, OSError) as exc:
        log.warning("term other instances: %s", exc)
        return []
    own_pid = os.getpid()
    pids = []
    for process in psutil.process_iter(["pid", "cmdline", "username"]):
        info = process.info
        cmdline = " ".join(info.get("cmdline") or [])
        if (
            name in cmdline
            and "wrap" not in cmdline
            and "run" not in cmdline
            and appimage_env not in cmdline
            and myself not in cmdline
        ):
            if info.get("username") == current_user and info.get("pid") != own_pid:
                pids.append(info["pid"])
    return pids


def terminate_other_instances() -> list[int]:
    """Report other running instances; they are not signalled yet."""
    try:
        myself = os.readlink("/proc/self/exe")
    except OSError:
        myself = sys.executable
    print("This process based on /proc/self/exe:", myself)
    print("Terminating other running processes with that name...")
    pids = other_instances(myself, os.environ)
    for pid in pids:
        print("In the future, would send SIGTERM to", pid)
    return pids


def showexec_hint() -> str:
    """Shell commands that work around volumes mounted with showexec."""
    return _SHOWEXEC_HINT


def _add_to_path(directories: Iterable[str]) -> None:
    entries = [entry for entry in os.environ.get("PATH", "").split(":") if entry]
    for directory in directories:
        if directory and directory not in entries:
            entries.append(directory)
    os.environ["PATH"] = ":".join(entries)


def check_prerequisites(settings: Settings, executable, watched_directories: Iterable[str] = ()) -> None:
    """Run all start-up checks and prepare directories; SystemExit on fatal problems."""
    executable = os.fspath(executable)
    ensure_running_from_live_system()

    _add_to_path([os.path.dirname(os.path.abspath(executable)), *watched_directories])
    try:
        check_tools(NEEDED_TOOLS)
    except RuntimeError as exc:
        log.error("%s", exc)
        raise SystemExit(1) from exc

    terminate_other_instances()

    if "APPIMAGE" not in os.environ:
        log.info("Running from AppImage type %s", AppImage(executable).type)
        if "GOCACHE" not in os.environ:
            log.error("Not running from within an AppImage, exiting")
            raise SystemExit(1)
        send_notification(
            "Not running from an AppImage",
            "This is discouraged because some functionality may not be available",
            5000,
        )

    if check_systemd_service_running(OTHER_DAEMON_PATTERNS):
        send_error_notification(
            "Other AppImage integration daemon detected",
            "Please uninstall appimagelauncher first, then try again",
        )
        raise SystemExit(1)

    for entry in BINFMT_ENTRIES:
        exit_if_binfmt_exists(entry)

    applications = Path(settings.applications_dir)
    if settings.clean:
        removed = clean_desktop_files(applications)
        log.info("Deleted %d desktop files from %s", len(removed), applications)

    home = Path(os.environ.get("HOME") or Path.home())
    for directory in (applications, Path(settings.thumbnails_dir), home / ".cache" / "applications"):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            log.warning("main: %s", exc)

    old_thumbnails = home / ".thumbnails" / "normal"
    if not Path(settings.thumbnails_dir).exists() and old_thumbnails.exists():
        log.info("Using %s as the location for thumbnails", old_thumbnails)
        settings.thumbnails_dir = old_thumbnails

    marker_dir = Path(settings.data_home) / "appimagekit"
    try:
        marker_dir.mkdir(parents=True, exist_ok=True)
        (marker_dir / "no_desktopintegration").touch()
    except OSError as exc:
        log.warning("main: %s", exc)