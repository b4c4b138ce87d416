"""Thumbnails for AppImages, following the freedesktop thumbnail specification."""

from __future__ import annotations

import functools
import logging
import os
import re
import shutil
import struct
import subprocess
import zlib
from pathlib import Path
from typing import Iterator

from .appimage import AppImage, AppImageError
from .desktop import MAIN_SECTION, DesktopEntry

log = logging.getLogger(__name__)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

# Size SVG icons are rendered at.
SVG_RENDER_SIZE = 512
_DEFAULT_ICON_SIZE = 128
_DEFAULT_ICON_COLOUR = bytes((0x5A, 0x7D, 0xA8, 0xFF))

_COMMENT = re.compile(rb"<!--[\s\S]*?-->")
_SVG = re.compile(
    rb"^\s*(?:<\?xml[^>]*>\s*)?(?:<!doctype svg[^>]*>\s*)?<svg[^>]*>[^*]*</svg>\s*$",
    re.IGNORECASE,
)
# Control bytes that never appear in text documents.
_BINARY_BYTES = bytes(sorted(set(range(32)) - {9, 10, 12, 13, 27}))


def is_svg(data) -> bool:
    """Return whether data is an SVG document."""
    data = bytes(data)
    if len(data.translate(None, _BINARY_BYTES)) != len(data):
        return False
    return _SVG.match(_COMMENT.sub(b"", data)) is not None


def is_png(data) -> bool:
    """Return whether data carries the PNG magic."""
    return bytes(data[1:4]) == b"PNG"


def _chunk(kind: bytes, payload: bytes) -> bytes:
    crc = zlib.crc32(kind + payload) & 0xFFFFFFFF
    return struct.pack(">I", len(payload)) + kind + payload + struct.pack(">I", crc)


def _chunks(data: bytes) -> Iterator[tuple[bytes, bytes, bytes]]:
    """Yield (type, payload, raw bytes) for each chunk up to and including IEND."""
    pos = len(PNG_SIGNATURE)
    while pos + 8 <= len(data):
        length, kind = struct.unpack(">I4s", data[pos : pos + 8])
        end = pos + 12 + length
        if end > len(data):
            raise ValueError("truncated PNG chunk")
        yield kind, data[pos + 8 : pos + 8 + length], data[pos:end]
        pos = end
        if kind == b"IEND":
            return
    raise ValueError("PNG without IEND chunk")


def embed_png_text(data, key: str, value) -> bytes:
    """Return data with a tEXt chunk key=value, replacing one with the same key."""
    data = bytes(data)
    if not data.startswith(PNG_SIGNATURE):
        raise ValueError("not a PNG image")
    keyword = key.encode("latin-1")
    if not 1 <= len(keyword) <= 79 or b"\0" in keyword:
        raise ValueError(f"invalid PNG text keyword: {key!r}")
    text = str(value).encode("latin-1", "replace")
    new_chunk = _chunk(b"tEXt", keyword + b"\0" + text)
    parts = [PNG_SIGNATURE]
    for index, (kind, payload, raw) in enumerate(_chunks(data)):
        if index == 0 and kind != b"IHDR":
            raise ValueError("PNG does not start with IHDR")
        if kind == b"tEXt" and payload.split(b"\0", 1)[0] == keyword:
            continue
        parts.append(raw)
        if kind == b"IHDR":
            parts.append(new_chunk)
    return b"".join(parts)


@functools.lru_cache(maxsize=None)
def default_icon() -> bytes:
    """Generic icon used when an AppImage provides no usable one."""
    size = _DEFAULT_ICON_SIZE
    header = struct.pack(">IIBBBBB", size, size, 8, 6, 0, 0, 0)
    row = b"\0" + _DEFAULT_ICON_COLOUR * size
    pixels = zlib.compress(row * size, 9)
    return (
        PNG_SIGNATURE
        + _chunk(b"IHDR", header)
        + _chunk(b"IDAT", pixels)
        + _chunk(b"IEND", b"")
    )


def _desktop_icon(appimage: AppImage) -> bytes:
    entry = DesktopEntry.parse(appimage.read_desktop_entry())
    icon = entry.get(MAIN_SECTION, "Icon").strip()
    if not icon:
        raise AppImageError(f"no icon named in the desktop file of {appimage.path}")
    if os.path.splitext(icon)[1].lower() in (".png", ".svg"):
        names = [icon]
    else:
        names = [icon + ".png", icon + ".svg"]
    for name in names:
        try:
            return appimage.read_file(name)
        except AppImageError:
            continue
    raise AppImageError(f"icon {icon} not found in {appimage.path}")


def thumbnail_or_icon(appimage: AppImage) -> bytes:
    """Return .DirIcon, else the desktop file's icon, else a generic icon."""
    fallback = default_icon()
    try:
        data = appimage.read_file(".DirIcon")
    except AppImageError:
        log.info("thumbnail: cannot read .DirIcon of %s", appimage.path)
    else:
        if not is_svg(data):
            return data
        log.info("thumbnail: .DirIcon is an SVG, checking desktop icon")
        fallback = data
    try:
        return _desktop_icon(appimage)
    except AppImageError:
        log.info("thumbnail: cannot read the desktop icon of %s", appimage.path)
        return fallback


def _convert_to_png(data: bytes) -> bytes:
    converter = shutil.which("rsvg-convert")
    if converter is None:
        raise ValueError("no SVG renderer available")
    size = str(SVG_RENDER_SIZE)
    result = subprocess.run(
        [converter, "-w", size, "-h", size, "-f", "png"],
        input=data,
        capture_output=True,
        check=False,
    )
    if result.returncode != 0 or not is_png(result.stdout):
        raise ValueError(result.stderr.decode("utf-8", "replace").strip() or "SVG conversion failed")
    return result.stdout


def _embed_or_keep(data: bytes, key: str, value) -> bytes:
    try:
        return embed_png_text(data, key, value)
    except ValueError as exc:
        log.warning("thumbnail: %s", exc)
        return data


def write_thumbnail(appimage: AppImage) -> Path:
    """Write the thumbnail of appimage with its URI and mtime; return its path."""
    if not appimage.valid:
        raise AppImageError(f"{appimage.path} is not an AppImage")
    icon = thumbnail_or_icon(appimage)
    if is_svg(icon):
        log.info("thumbnail: icon of %s is an SVG, this is discouraged; converting it", appimage.path)
        try:
            icon = _convert_to_png(icon)
        except (ValueError, OSError) as exc:
            log.warning("thumbnail: %s", exc)
            icon = default_icon()
    if not is_png(icon):
        log.info("thumbnail: not a PNG file, using generic icon")
        icon = default_icon()
    icon = _embed_or_keep(icon, "Thumb::URI", appimage.uri)
    mtime = appimage.mtime
    if mtime is not None:
        icon = _embed_or_keep(icon, "Thumb::MTime", int(mtime))
    target = Path(appimage.thumbnail_filepath)
    target.parent.mkdir(parents=True, exist_ok=True)
    log.debug("thumbnail: Writing icon to %s", target)
    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(icon)
    os.chmod(target, 0o600)
    return target