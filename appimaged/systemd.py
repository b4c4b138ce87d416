"""Running the daemon as a systemd user service."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Iterable

from .config import config_home

log = logging.getLogger(__name__)

SERVICE_NAME = "appimaged"
SERVICE_FILENAME = "appimaged.service"
SYSTEM_SERVICE_FILE = Path("/etc/systemd/user") / SERVICE_FILENAME
LAUNCHED_BY_SYSTEMD = "LAUNCHED_BY_SYSTEMD"


def _run(args: list[str], merge_output: bool = False) -> subprocess.CompletedProcess | None:
    """Run args and capture text output; None if it cannot be started."""
    try:
        return subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT if merge_output else subprocess.PIPE,
            text=True,
            check=False,
        )
    except OSError as exc:
        log.warning("%s: %s", " ".join(args), exc)
        return None


def _succeeded(result: subprocess.CompletedProcess | None, args: list[str]) -> bool:
    if result is None:
        return False
    if result.returncode != 0:
        log.warning("%s: exit status %d", " ".join(args), result.returncode)
        return False
    return True


def check_systemd_service_running(patterns: Iterable[str]) -> bool:
    """Whether user units matching any of the glob patterns are loaded."""
    args = ["systemctl", "--user", "list-units", "--all", "--no-legend", "--plain", *patterns]
    result = _run(args)
    if not _succeeded(result, args):
        return False
    units = [line.split() for line in result.stdout.splitlines() if line.strip()]
    for unit in units:
        log.info("%s %s", unit[0], unit[2] if len(unit) > 2 else "")
    return bool(units)


def is_running_systemd() -> bool:
    """Whether process 1 is systemd."""
    args = ["ps", "-p", "1", "-o", "comm="]
    result = _run(args)
    if not _succeeded(result, args):
        return False
    return result.stdout.strip() == "systemd"


def is_invoked_by_systemd() -> bool:
    """Whether this process was started by the systemd service we install."""
    if not is_running_systemd():
        log.info("This system is not running systemd")
        return False
    if LAUNCHED_BY_SYSTEMD in os.environ:
        log.info("Launched by systemd: %s is present", LAUNCHED_BY_SYSTEMD)
        return True
    log.info("Probably not launched by systemd (please file an issue if this is wrong)")
    return False


def service_file_contents(executable) -> str:
    """Text of the user service file that starts executable."""
    return (
        "[Unit]\n"
        "Description=AppImage system integration daemon\n"
        "After=syslog.target network.target\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        f"ExecStart={os.fspath(executable)}\n"
        "\n"
        "LimitNOFILE=65536\n"
        "\n"
        "RestartSec=3\n"
        "Restart=always\n"
        "\n"
        f"Environment={LAUNCHED_BY_SYSTEMD}=1\n"
        "\n"
        "[Install]\n"
        "WantedBy=default.target"
    )


def sync_write_file(path, data, mode: int = 0o644) -> None:
    """Write data to path and flush it to disk before closing."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    fd = os.open(os.fspath(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
        handle.flush()
        os.fsync(handle.fileno())


def _service_dir() -> Path:
    if os.environ.get("XDG_CONFIG_HOME"):
        return config_home() / "systemd" / "user"
    home = Path(os.environ.get("HOME") or Path.home())
    return home / ".config" / "systemd" / "user"


def install_service_file(executable) -> Path | None:
    """Install the user service file for executable and reload systemd."""
    directory = _service_dir()
    log.info("Creating %s", directory / SERVICE_FILENAME)
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        log.error("Failed making directory for service files: %s", exc)
        return None
    target = directory / SERVICE_FILENAME
    try:
        sync_write_file(target, service_file_contents(executable), 0o644)
    except OSError as exc:
        log.error("Error writing service file: %s", exc)
        return None
    args = ["systemctl", "--user", "daemon-reload"]
    _succeeded(_run(args, merge_output=True), args)
    return target


def setup_to_run_through_systemd(executable) -> bool:
    """Hand the daemon over to systemd when started by hand.

    Returns True when systemd now runs the daemon and this process should exit.
    """
    if not is_running_systemd():
        log.info("This system is not running systemd; skipping the systemd service")
        return False
    if is_invoked_by_systemd():
        return False

    log.info("Manually launched, not by systemd. Check if enabled in systemd...")
    if not SYSTEM_SERVICE_FILE.exists():
        log.info("%s does not exist", SYSTEM_SERVICE_FILE)
        install_service_file(executable)

    status = _run(["systemctl", "--user", "status", SERVICE_NAME], merge_output=True)
    # A stopped service gives a non-zero exit status, which is not an error here.
    output = status.stdout.strip() if status is not None else ""

    restart = ["systemctl", "--user", "restart", SERVICE_NAME]
    if " enabled; " in output:
        log.info("Restarting via systemd...")
        return _succeeded(_run(restart, merge_output=True), restart)

    log.info("Enabling systemd service...")
    enable = ["systemctl", "--user", "enable", SERVICE_NAME]
    _succeeded(_run(enable, merge_output=True), enable)
    log.info("Starting systemd service...")
    if _succeeded(_run(restart, merge_output=True), restart):
        log.info("appimaged should now be running via systemd. To check this, run")
        log.info("/usr/bin/systemctl -l --no-pager --user status appimaged")
        return True
    return False