import shutil
import tempfile

import pytest

from appimaged.mounts import (
    Mount,
    existing_directories,
    mount_application_dirs,
    parse_mountinfo,
    read_mounts,
)

SAMPLE = (
    "36 35 98:0 /mnt1 /mnt2 rw,noatime master:1 - ext3 /dev/root rw,errors=continue\n"
    "40 22 8:17 / /media/my\\040disk rw,nosuid shared:5 - vfat /dev/sdb1 rw,showexec,uid=1000\n"
    "garbage line\n"
)


@pytest.fixture(autouse=True)
def no_bus(monkeypatch, tmp_path):
    monkeypatch.setenv("DBUS_SESSION_BUS_ADDRESS", "unix:path=" + str(tmp_path / "nobus"))


@pytest.fixture
def outside_tmp():
    directory = tempfile.mkdtemp(dir="/var/tmp")
    yield directory
    shutil.rmtree(directory, ignore_errors=True)


def test_parse_mountinfo():
    mounts = parse_mountinfo(SAMPLE)
    assert len(mounts) == 2
    first, second = mounts
    assert first.mount_point == "/mnt2"
    assert first.root == "/mnt1"
    assert first.fstype == "ext3"
    assert first.source == "/dev/root"
    assert first.super_options == {"rw": "", "errors": "continue"}
    assert second.mount_point == "/media/my disk"
    assert "showexec" in second.super_options
    assert second.super_options["uid"] == "1000"


def test_read_mounts(tmp_path):
    path = tmp_path / "mountinfo"
    path.write_text(SAMPLE)
    assert read_mounts(path) == parse_mountinfo(SAMPLE)
    assert read_mounts(tmp_path / "missing") == []


def test_application_dirs_found_once(outside_tmp):
    import os

    os.mkdir(os.path.join(outside_tmp, "Applications"))
    mount = Mount(mount_point=outside_tmp)
    assert mount_application_dirs([mount, mount]) == [outside_tmp + "/Applications"]


def test_showexec_mount_skipped(outside_tmp):
    import os

    os.mkdir(os.path.join(outside_tmp, "Applications"))
    mount = Mount(mount_point=outside_tmp, super_options={"showexec": ""})
    assert mount_application_dirs([mount]) == []


def test_excluded_prefixes(tmp_path):
    (tmp_path / "Applications").mkdir()
    mounts = [Mount(mount_point="/proc"), Mount(mount_point="/sys/fs"), Mount(mount_point=str(tmp_path))]
    result = mount_application_dirs(mounts)
    assert all(not path.startswith(("/proc", "/sys", "/tmp")) for path in result)


def test_mount_without_applications(outside_tmp):
    assert mount_application_dirs([Mount(mount_point=outside_tmp)]) == []


def test_existing_directories(tmp_path):
    present = tmp_path / "a"
    present.mkdir()
    candidates = [str(tmp_path / "missing"), "", str(present), str(tmp_path)]
    assert existing_directories(candidates) == [str(present), str(tmp_path)]