import os
from types import SimpleNamespace

import pytest

from appimaged.config import EXEC_LOCATION_KEY, UPDATE_INFORMATION_KEY
from appimaged.desktop import (
    DesktopEntry,
    build_desktop_entry,
    fix_desktop_file,
    is_writable,
    write_desktop_file,
)

LAUNCHER = "/usr/bin/appimaged"
SOURCE = (
    "[Desktop Entry]\n"
    "Name=Tool\n"
    "Exec=tool %F\n"
    "Actions=new;\n"
    "\n"
    "[Desktop Action new]\n"
    "Name=New\n"
    "Exec=tool --new-window\n"
)
ALL_COMMANDS = {"gio", "kioclient", "xdg-open", "firejail"}


def make_appimage(tmp_path, update_information="", kind=2, source=SOURCE):
    path = tmp_path / "Tool.AppImage"
    path.write_bytes(b"")
    return SimpleNamespace(
        path=str(path),
        name="Tool",
        thumbnail_filepath=tmp_path / "thumb.png",
        identifier="abc",
        update_information=update_information,
        type=kind,
        desktop_filepath=tmp_path / "apps" / "appimagekit_abc.desktop",
        read_desktop_entry=lambda: source,
    )


def test_parse_dumps_round_trip():
    entry = DesktopEntry.parse(SOURCE)
    assert DesktopEntry.parse(entry.dumps()) == entry
    assert entry.get("Desktop Action new", "Exec") == "tool --new-window"


def test_get_set_has():
    entry = DesktopEntry.parse(SOURCE)
    assert entry.get("Desktop Entry", "Missing", "fallback") == "fallback"
    assert not entry.has("Other", "Key")
    entry.set("Other", "Key", "value")
    assert entry.has("Other", "Key")
    assert list(entry.sections)[-1] == "Other"


def test_main_keys_rewritten(tmp_path):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER)
    main = "Desktop Entry"
    assert entry.get(main, "Exec") == f'{LAUNCHER} wrap "{ai.path}" %F'
    assert entry.get(main, EXEC_LOCATION_KEY) == ai.path
    assert entry.get(main, "TryExec") == LAUNCHER
    assert entry.get(main, "Comment") == ai.path
    assert entry.get(main, "Icon") == str(ai.thumbnail_filepath)
    assert entry.get(main, "X-AppImage-Identifier") == "abc"
    assert entry.get(main, "Type") == "Application"
    assert entry.get(main, "Name") == "Tool"


def test_name_taken_from_appimage_when_missing(tmp_path):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry("[Desktop Entry]\nExec=tool\n", ai, LAUNCHER)
    assert entry.get("Desktop Entry", "Name") == ai.name
    assert entry.get("Desktop Entry", "Exec") == f'{LAUNCHER} wrap "{ai.path}"'


def test_existing_action_rewritten(tmp_path):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER)
    assert entry.get("Desktop Action new", "Exec") == f'{LAUNCHER} wrap "{ai.path}" --new-window'


def test_all_actions_in_order(tmp_path):
    ai = make_appimage(tmp_path, update_information="zsync|https://example.com/a.zsync")
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER, ALL_COMMANDS, True)
    assert entry.get("Desktop Entry", "Actions").split(";") == [
        "new", "Trash", "OpenPortableHome", "CreatePortableHome", "Extract",
        "Update", "Show", "Firejail", "FirejailNoNetwork", "FirejailPrivate",
        "FirejailOverlayTmpfs",
    ]
    for action in entry.get("Desktop Entry", "Actions").split(";"):
        assert entry.has("Desktop Action " + action, "Exec")


def test_minimal_actions(tmp_path):
    ai = make_appimage(tmp_path, kind=1)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER, set(), False)
    assert entry.get("Desktop Entry", "Actions") == "new"
    assert not entry.has("Desktop Action Trash", "Exec")


@pytest.mark.parametrize(
    "commands, expected",
    [
        ({"gio", "kioclient"}, 'gio trash "{path}"'),
        ({"kioclient"}, 'kioclient move "{path}" trash:/'),
        (set(), 'mv "{path}" ~/.local/share/Trash/'),
    ],
)
def test_trash_command(tmp_path, commands, expected):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER, commands, True)
    assert entry.get("Desktop Action Trash", "Exec") == expected.format(path=ai.path)


def test_extract_when_not_writable(tmp_path):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER, set(), False)
    assert entry.get("Desktop Action Extract", "Exec") == (
        "bash -c \"cd ~ && '" + ai.path + "' --appimage-extract && xdg-open ~/squashfs-root\""
    )


def test_show_opens_containing_folder(tmp_path):
    ai = make_appimage(tmp_path)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER, {"xdg-open"}, False)
    assert entry.get("Desktop Action Show", "Exec") == f'xdg-open "{tmp_path}"'


def test_update_information_quoted(tmp_path):
    ui = "zsync|https://example.com/a.zsync"
    ai = make_appimage(tmp_path, update_information=ui)
    entry = build_desktop_entry(SOURCE, ai, LAUNCHER)
    assert entry.get("Desktop Entry", UPDATE_INFORMATION_KEY) == f'"{ui}"'
    assert entry.get("Desktop Action Update", "Exec") == f'{LAUNCHER} update "{ai.path}"'


def test_source_entry_not_modified(tmp_path):
    source = DesktopEntry.parse(SOURCE)
    before = source.dumps()
    build_desktop_entry(source, make_appimage(tmp_path), LAUNCHER, ALL_COMMANDS, True)
    assert source.dumps() == before


def test_fix_desktop_file_backticks_and_semicolons():
    assert fix_desktop_file(b'Exec=`tool "x"`\n') == b'Exec=tool "x"\n'
    assert fix_desktop_file("Actions=a\uff1bb\n") == "Actions=a;b\n"


def test_is_writable(tmp_path):
    existing = tmp_path / "file"
    existing.write_text("x")
    assert is_writable(existing)
    assert not is_writable(tmp_path / "missing")


def test_write_desktop_file(tmp_path):
    ai = make_appimage(tmp_path)
    ai.desktop_filepath.parent.mkdir()
    ai.desktop_filepath.write_text("stale")
    target = write_desktop_file(ai, LAUNCHER)
    assert target == ai.desktop_filepath
    written = DesktopEntry.parse(target.read_text())
    assert written.get("Desktop Entry", EXEC_LOCATION_KEY) == ai.path
    assert written.get("Desktop Entry", "Exec") == f'{LAUNCHER} wrap "{ai.path}" %F'
    assert "Trash" in written.get("Desktop Entry", "Actions").split(";") or not os.access(
        ai.path, os.W_OK
    )