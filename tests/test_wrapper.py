import os
import sys

import pytest

from appimaged.wrapper import (
    check_desktop_files,
    describe_failure,
    find_desktop_files_pointing_to,
    validate_desktop_file,
    wrap,
)


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setenv("DBUS_SESSION_BUS_ADDRESS", "unix:path=" + str(tmp_path / "nobus"))


def test_missing_library():
    stderr = (
        "foo: error while loading shared libraries: libbar.so.1: "
        "cannot open shared object file: No such file or directory\n"
    )
    summary, body = describe_failure("/opt/foo", stderr, None)
    assert summary == "Cannot open foo"
    assert body == "Missing library libbar.so.1"


def test_generic_failure_uses_stderr():
    summary, body = describe_failure("/x/tool", "  boom \n", "Tool")
    assert summary == "Cannot open Tool"
    assert body == "boom"


def test_execv_only_for_appimages():
    _, body = describe_failure("/x/App.AppImage", "execv error", "App")
    assert "AppRun is missing" in body
    _, body = describe_failure("/x/App.AppImage", "execv error", None)
    assert body == "execv error"


def test_qt_plugin_message():
    _, body = describe_failure("/x/App.AppImage", "Could not load the Qt platform plugin", "App")
    assert body.startswith("App.AppImage is defective")


def _write(path, exec_line):
    path.write_text(f"[Desktop Entry]\nType=Application\nName=N\nExec={exec_line}\n")


def test_find_desktop_files(tmp_path):
    apps = tmp_path / "apps"
    apps.mkdir()
    _write(apps / "a.desktop", "/opt/tool --flag")
    _write(apps / "b.desktop", "/usr/bin/other")
    (apps / "c.txt").write_text("Exec=/opt/tool")
    real = tmp_path / "real.desktop"
    _write(real, "/opt/tool")
    os.symlink(real, apps / "link.desktop")
    assert find_desktop_files_pointing_to("/opt/tool", apps) == ["a.desktop", "link.desktop"]


def test_find_missing_directory_raises(tmp_path):
    with pytest.raises(OSError):
        find_desktop_files_pointing_to("/opt/tool", tmp_path / "none")


def test_validate_missing_section(tmp_path):
    path = tmp_path / "bad.desktop"
    path.write_text("[Other]\nName=x\n")
    with pytest.raises(ValueError):
        validate_desktop_file(path)


def test_validate_missing_name(tmp_path):
    path = tmp_path / "bad.desktop"
    path.write_text("[Desktop Entry]\nType=Application\n")
    with pytest.raises(ValueError, match="Name"):
        validate_desktop_file(path)


def test_check_desktop_files_without_matches(tmp_path):
    apps = tmp_path / "apps"
    apps.mkdir()
    _write(apps / "a.desktop", "/usr/bin/other")
    assert check_desktop_files("/opt/tool", apps) == []


def test_wrap_without_arguments():
    assert wrap([]) == 1


def test_wrap_passes_exit_code():
    assert wrap([sys.executable, "-c", "pass"]) == 0
    assert wrap([sys.executable, "-c", "import sys; sys.exit(3)"]) == 3


def test_wrap_missing_program(tmp_path):
    assert wrap([str(tmp_path / "missing")]) == 1