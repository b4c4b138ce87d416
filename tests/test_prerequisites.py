import os
from unittest import mock

import pytest

from appimaged.prerequisites import (
    check_tools,
    clean_desktop_files,
    exit_if_binfmt_exists,
    is_live_system,
    other_instances,
    read_os_release,
    showexec_hint,
)


def test_read_os_release_parses_quoted_values(tmp_path):
    path = tmp_path / "os-release"
    path.write_text('# comment\nID=deepin\nNAME="Deepin Linux"\n\nVERSION_ID="15.11"\n')
    assert read_os_release(path) == {"ID": "deepin", "NAME": "Deepin Linux", "VERSION_ID": "15.11"}


def test_read_os_release_missing_file(tmp_path):
    assert read_os_release(tmp_path / "absent") == {}


@pytest.mark.parametrize("cmdline", ["boot=casper quiet", "root=live:CDLABEL", "iso-scan/filename=x.iso"])
def test_live_keywords_in_cmdline(cmdline):
    assert is_live_system(cmdline, {}, {}) is True


def test_installed_system_is_not_live():
    assert is_live_system("root=/dev/sda1 quiet", {"ID": "ubuntu"}, {}) is False


@pytest.mark.parametrize("system", ["deepin", "clear-linux-os"])
def test_tested_systems_are_allowed(system):
    assert is_live_system("root=/dev/sda1", {"ID": system}, {}) is True


def test_systemd_and_development_exceptions():
    assert is_live_system("root=/dev/sda1", {}, {"LAUNCHED_BY_SYSTEMD": "1"}) is True
    assert is_live_system("root=/dev/sda1", {}, {"LAUNCHED_BY_SYSTEMD": ""}) is False
    assert is_live_system("root=/dev/sda1", {}, {"GOCACHE": ""}) is True


def test_check_tools_resolves_paths():
    found = check_tools(["sh"])
    assert list(found) == ["sh"]
    assert os.path.basename(found["sh"]) == "sh"


def test_check_tools_reports_missing():
    with pytest.raises(RuntimeError, match="no-such-tool-for-appimaged"):
        check_tools(["sh", "no-such-tool-for-appimaged"])


def test_binfmt_absent(tmp_path):
    assert exit_if_binfmt_exists(tmp_path / "appimage-type1") is False


def test_binfmt_that_stays_exits(tmp_path):
    entry = tmp_path / "appimage-type2"
    entry.write_text("enabled\n")
    with mock.patch("appimaged.prerequisites.subprocess.run") as run:
        with pytest.raises(SystemExit) as info:
            exit_if_binfmt_exists(entry)
    assert info.value.code == 1
    assert run.call_args[0][0][:2] == ["/bin/sh", "-c"]


def test_binfmt_that_goes_away(tmp_path):
    entry = tmp_path / "appimage-type1"
    entry.write_text("enabled\n")
    with mock.patch("appimaged.prerequisites.subprocess.run", side_effect=lambda *a, **k: entry.unlink()):
        assert exit_if_binfmt_exists(entry) is True
    assert not entry.exists()


def test_clean_desktop_files_only_removes_own(tmp_path):
    (tmp_path / "appimagekit_a.desktop").write_text("[Desktop Entry]\n")
    (tmp_path / "appimagekit_b.desktop").write_text("[Desktop Entry]\n")
    (tmp_path / "other.desktop").write_text("[Desktop Entry]\n")
    removed = clean_desktop_files(tmp_path)
    assert [p.name for p in removed] == ["appimagekit_a.desktop", "appimagekit_b.desktop"]
    assert sorted(p.name for p in tmp_path.iterdir()) == ["other.desktop"]


def test_other_instances_without_appimage_env_matches_nothing():
    assert other_instances("/usr/bin/python3", {}) == []


def test_showexec_hint_restarts_udisks():
    hint = showexec_hint()
    assert "systemctl stop udisks2" in hint
    assert hint.rstrip().endswith("+")