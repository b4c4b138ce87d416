"""Inspection of AppImage files and lookup of integrated AppImages."""

from __future__ import annotations

import configparser
import hashlib
import logging
import os
import struct
import subprocess
from functools import cached_property
from pathlib import Path
from typing import IO, Iterable, NamedTuple
from urllib.parse import unquote_plus

from .config import EXEC_LOCATION_KEY, applications_dir, thumbnails_dir

log = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"

# Transport name -> number of "|"-separated fields, including the name.
_UPDATE_TRANSPORTS = {
    "zsync": 2,
    "gh-releases-zsync": 5,
    "bintray-zsync": 5,
    "pling-v1-zsync": 3,
}


class AppImageError(Exception):
    """Raised when a file cannot be read as an AppImage."""


class _ElfLayout(NamedTuple):
    order: str
    elf_class: int
    shoff: int
    shentsize: int
    shnum: int
    shstrndx: int


def _read_layout(handle: IO[bytes]) -> _ElfLayout:
    ident = handle.read(16)
    if len(ident) < 16 or ident[:4] != ELF_MAGIC:
        raise AppImageError("not an ELF file")
    elf_class, data = ident[4], ident[5]
    if elf_class not in (1, 2) or data not in (1, 2):
        raise AppImageError("unsupported ELF class or byte order")
    order = "<" if data == 1 else ">"
    fmt = order + ("HHIQQQIHHHHHH" if elf_class == 2 else "HHIIIIIHHHHHH")
    raw = handle.read(struct.calcsize(fmt))
    if len(raw) < struct.calcsize(fmt):
        raise AppImageError("truncated ELF header")
    fields = struct.unpack(fmt, raw)
    return _ElfLayout(order, elf_class, fields[5], fields[10], fields[11], fields[12])


def elf_size(path) -> int:
    """Return the size of the ELF part, where the embedded filesystem begins."""
    try:
        with open(path, "rb") as handle:
            layout = _read_layout(handle)
    except OSError as exc:
        raise AppImageError(str(exc)) from exc
    return layout.shoff + layout.shentsize * layout.shnum


def _cstring(table: bytes, offset: int) -> str:
    end = table.find(b"\0", offset)
    return table[offset : end if end >= 0 else len(table)].decode("utf-8", "replace")


def read_elf_section(path, name: str) -> bytes:
    """Return the contents of the ELF section called name."""
    try:
        with open(path, "rb") as handle:
            layout = _read_layout(handle)
            shfmt = layout.order + ("IIQQQQIIQQ" if layout.elf_class == 2 else "IIIIIIIIII")
            if layout.shnum and layout.shentsize != struct.calcsize(shfmt):
                raise AppImageError("unexpected section header size")
            handle.seek(layout.shoff)
            table = handle.read(layout.shentsize * layout.shnum)
            if len(table) < layout.shentsize * layout.shnum:
                raise AppImageError("truncated section header table")
            headers = list(struct.iter_unpack(shfmt, table)) if table else []
            if layout.shstrndx >= len(headers):
                raise AppImageError("missing section name table")
            strtab_header = headers[layout.shstrndx]
            handle.seek(strtab_header[4])
            strtab = handle.read(strtab_header[5])
            for header in headers:
                if _cstring(strtab, header[0]) == name:
                    handle.seek(header[4])
                    return handle.read(header[5])
    except OSError as exc:
        raise AppImageError(str(exc)) from exc
    raise AppImageError(f"section {name} not found in {path}")


def appimage_type(path) -> int:
    """Return 1 or 2 for AppImages of that type, -1 otherwise."""
    try:
        with open(path, "rb") as handle:
            head = handle.read(16)
    except OSError:
        return -1
    if head[:4] != ELF_MAGIC:
        return -1
    return {b"AI\x01": 1, b"AI\x02": 2}.get(head[8:11], -1)


def is_appimage(path) -> bool:
    return appimage_type(path) > 0


def file_uri(path) -> str:
    """Return the canonical file:// URI of path."""
    return Path(os.path.normpath(os.path.abspath(os.fspath(path)))).as_uri()


def identifier_for(path) -> str:
    """MD5 of the file URI, as used for desktop and thumbnail file names."""
    return hashlib.md5(file_uri(path).encode("utf-8")).hexdigest()


def validate_update_information(text: str) -> None:
    """Raise ValueError unless text is well-formed update information."""
    parts = text.split("|")
    transport = parts[0]
    expected = _UPDATE_TRANSPORTS.get(transport)
    if expected is None:
        raise ValueError(f"unknown update information transport: {transport!r}")
    if len(parts) != expected:
        raise ValueError(
            f"{transport} update information needs {expected} fields, got {len(parts)}"
        )
    if not all(part.strip() for part in parts):
        raise ValueError("update information has empty fields")
    if transport != "pling-v1-zsync" and not parts[-1].endswith(".zsync"):
        raise ValueError("update information must point to a .zsync file")


def _strip_appimage_suffix(filename: str) -> str:
    for suffix in (".appimage", ".app"):
        if filename.lower().endswith(suffix):
            return filename[: -len(suffix)]
    return filename


def _desktop_name(text: str) -> str:
    section = ""
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1]
        elif section == "Desktop Entry" and line.startswith("Name="):
            return line[len("Name=") :].strip()
    return ""


class AppImage:
    """An AppImage at a path; the path need not exist (needed for removal)."""

    def __init__(self, path):
        self.path = os.path.abspath(os.fspath(path))
        self.uri = file_uri(self.path)
        self.identifier = identifier_for(self.path)
        self.desktop_filename = f"appimagekit_{self.identifier}.desktop"
        self.desktop_filepath = applications_dir() / self.desktop_filename
        self.thumbnail_filename = f"{self.identifier}.png"
        self.thumbnail_filepath = thumbnails_dir() / self.thumbnail_filename
        self.type = appimage_type(self.path)
        self.update_information = ""
        if self.valid:
            try:
                self.update_information = self.read_update_information()
            except AppImageError:
                pass

    def __repr__(self) -> str:
        return f"AppImage({self.path!r})"

    @property
    def valid(self) -> bool:
        return self.type > 0

    @property
    def mtime(self) -> float | None:
        try:
            return os.stat(self.path).st_mtime
        except OSError:
            return None

    @cached_property
    def name(self) -> str:
        """Name from the embedded desktop file, or the file name."""
        try:
            name = _desktop_name(self.read_desktop_entry())
        except AppImageError:
            name = ""
        return name or _strip_appimage_suffix(os.path.basename(self.path))

    def read_update_information(self) -> str:
        data = read_elf_section(self.path, ".upd_info")
        return data.strip(b"\0").decode("utf-8", "replace").strip()

    def validate(self) -> None:
        """Raise ValueError if the embedded update information is malformed."""
        log.debug("Validating AppImage %s", self.path)
        if self.update_information:
            validate_update_information(self.update_information)

    def set_exec_bit(self) -> bool:
        try:
            os.chmod(self.path, 0o755)
        except OSError:
            return False  # read-only media are common
        log.debug("Set executable bit on %s", self.path)
        return True

    def _run(self, command: list[str]) -> bytes:
        if not self.valid:
            raise AppImageError(f"{self.path} is not an AppImage")
        try:
            result = subprocess.run(command, capture_output=True, check=False)
        except OSError as exc:
            raise AppImageError(f"cannot run {command[0]}: {exc}") from exc
        if result.returncode != 0:
            message = result.stderr.decode("utf-8", "replace").strip()
            raise AppImageError(message or f"{command[0]} failed")
        return result.stdout

    def _list_files(self) -> list[str]:
        if self.type == 1:
            output = self._run(["bsdtar", "-t", "-f", self.path])
            names = (line.removeprefix("./") for line in output.decode().splitlines())
        else:
            output = self._run(
                ["unsquashfs", "-q", "-o", str(elf_size(self.path)), "-l", self.path]
            )
            names = (
                line.removeprefix("squashfs-root/")
                for line in output.decode().splitlines()
                if line.startswith("squashfs-root/")
            )
        return [name for name in names if name]

    def read_file(self, name: str) -> bytes:
        """Return the contents of a file inside the AppImage."""
        if not self.valid:
            raise AppImageError(f"{self.path} is not an AppImage")
        name = name.lstrip("/")
        if self.type == 1:
            command = ["bsdtar", "-x", "-O", "-f", self.path, name]
        else:
            command = [
                "unsquashfs", "-q", "-o", str(elf_size(self.path)), "-cat", self.path, name,
            ]
        return self._run(command)

    def read_desktop_entry(self) -> str:
        """Return the text of the top-level desktop file."""
        candidates = [
            name for name in self._list_files() if "/" not in name and name.endswith(".desktop")
        ]
        if not candidates:
            raise AppImageError(f"no desktop file in {self.path}")
        return self.read_file(candidates[0]).decode("utf-8", "replace")


def _desktop_entry_value(path: Path, key: str) -> str:
    parser = configparser.ConfigParser(
        interpolation=None,
        strict=False,
        delimiters=("=",),
        comment_prefixes=("#",),
        inline_comment_prefixes=None,
    )
    parser.optionxform = str
    try:
        parser.read(path, encoding="utf-8")
    except (configparser.Error, UnicodeDecodeError) as exc:
        log.warning("desktop: %s: %s", path, exc)
        return ""
    return parser.get("Desktop Entry", key, fallback="")


def most_recent_file(paths: Iterable) -> str | None:
    """Return the path with the newest modification time, or None."""
    stamped = []
    for path in paths:
        try:
            stamped.append((os.stat(path).st_mtime, os.fspath(path)))
        except OSError:
            continue
    if not stamped:
        return None
    return max(stamped, key=lambda item: item[0])[1]


def find_appimages_with_update_information(update_information: str, applications_dir=None) -> list[str]:
    """Paths of integrated AppImages carrying the given update information."""
    directory = Path(applications_dir) if applications_dir is not None else globals_applications_dir()
    try:
        names = sorted(os.listdir(directory))
    except OSError as exc:
        log.warning("desktop: %s", exc)
        return []
    results = []
    for name in names:
        if not (name.startswith("appimagekit_") and name.endswith(".desktop")):
            continue
        desktop_file = directory / name
        target = _desktop_entry_value(desktop_file, EXEC_LOCATION_KEY)
        if not target or not os.path.exists(target):
            log.info("%s does not exist, it is mentioned in %s", target, desktop_file)
            continue
        appimage = AppImage(target)
        if not appimage.valid or not appimage.update_information:
            continue
        if unquote_plus(appimage.update_information) == update_information:
            results.append(appimage.path)
    return results


def find_most_recent_appimage(update_information: str, applications_dir=None) -> str | None:
    """Newest integrated AppImage carrying the given update information."""
    return most_recent_file(
        find_appimages_with_update_information(update_information, applications_dir)
    )


globals_applications_dir = applications_dir