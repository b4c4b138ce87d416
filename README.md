# appimaged

A library of building blocks for registering AppImages and integrating them
with a Linux desktop: reading AppImages, writing menu entries and
thumbnails, launching and updating integrated applications, reporting
launch failures as desktop notifications, and preparing the environment a
desktop integration daemon runs in.

## Installation

```
pip install .
```

Several functions call external tools: `bsdtar` and `unsquashfs` (reading
files inside AppImages), `desktop-file-validate` (checking desktop files),
`gdbus` (desktop notifications), `rsvg-convert` (turning SVG icons into
PNG thumbnails) and `systemctl` (user service set-up). Where a tool is
missing, the function concerned logs it and falls back or reports failure.

## Modules

### `appimaged.config`

XDG locations (`data_home()`, `cache_home()`, `config_home()`,
`applications_dir()`, `thumbnails_dir()`), `candidate_directories()` — the
`PATH` entries followed by the Downloads and Desktop directories,
`~/.local/bin`, `~/bin`, `~/Applications`, `/opt` and `/usr/local/bin` —
and the `Settings` dataclass (`verbose`, `overwrite`, `clean`, `quiet`,
`no_zeroconf`, and the directories used).

### `appimaged.appimage`

- `AppImage(path)` — an AppImage at a path, which need not exist. It knows
  its `uri`, its `identifier` (MD5 of the file URI), the paths of its
  desktop file and thumbnail, its `type` (1, 2, or -1 if not an AppImage),
  its `name` and its embedded `update_information`. Methods:
  `read_update_information()`, `validate()`, `set_exec_bit()`,
  `read_file(name)`, `read_desktop_entry()`.
- `appimage_type(path)`, `is_appimage(path)`, `elf_size(path)`,
  `read_elf_section(path, name)`, `file_uri(path)`, `identifier_for(path)`.
- `validate_update_information(text)` raises `ValueError` for malformed
  update information (`zsync`, `gh-releases-zsync`, `bintray-zsync`,
  `pling-v1-zsync`).
- `find_appimages_with_update_information(...)` and
  `find_most_recent_appimage(...)` look through the desktop files written
  for integrated AppImages and return those carrying the given update
  information; `most_recent_file(paths)` picks the newest.
- Errors reading AppImages raise `AppImageError`.

```python
from appimaged.appimage import AppImage, find_most_recent_appimage

ai = AppImage("/home/me/Applications/Example-x86_64.AppImage")
print(ai.type, ai.name, ai.update_information)
print(find_most_recent_appimage(
    "gh-releases-zsync|example|example|latest|Example-*x86_64.AppImage.zsync"))
```

### `appimaged.desktop`

`DesktopEntry` parses and writes desktop files (`parse`, `get`, `set`,
`has`, `dumps`). `build_desktop_entry(source, appimage, launcher,
available_commands, writable)` turns an AppImage's own desktop entry into
the menu entry to install: `Exec=` goes through `<launcher> wrap`, the
thumbnail becomes the icon, and actions are added — Move to Trash and
portable home actions when the file is writable, Extract to AppDir for type
2, Update when there is update information, Open Containing Folder when
`xdg-open` is present, and Firejail sandbox actions when `firejail` is
present. `write_desktop_file(appimage, launcher)` writes it into the
applications directory.

### `appimaged.thumbnail`

`write_thumbnail(appimage)` writes a PNG thumbnail from `.DirIcon`, else the
desktop file's icon, else a generic icon (`default_icon()`), converting SVG
icons where possible, embedding `Thumb::URI` and `Thumb::MTime` and using
mode 0600. Helpers: `is_svg`, `is_png`, `embed_png_text`,
`thumbnail_or_icon`.

### `appimaged.commands`

`run_command(argv, applications_dir=None)` handles the verbs `run`, `start`,
`update` and `wrap` (argv without the program name) and returns the exit
status, or `None` when argv holds no command.

### `appimaged.wrapper`

`wrap(argv)` runs an executable, checks the desktop files pointing to it,
and on failure sends a notification built by `describe_failure(...)` (for
example "Missing library ..."). Also `find_desktop_files_pointing_to`,
`validate_desktop_file` and `check_desktop_files`.

### `appimaged.update`

`run_update(path)` launches the most recent integrated AppImageUpdater
(`find_updater()`, `updater_command(updater, path)`) and notifies the user
when none is integrated.

### `appimaged.notification`

`send_notification(title, body, timeout_ms)` and
`send_error_notification(title, body)` send desktop notifications through
`gdbus`; `notify_command(...)` returns the command line used.

### `appimaged.mqtt`

`UpdateSubscriber(server_uri, namespace, on_version)` connects to an MQTT
server (`connect`, `is_connected`, `ensure_connected`), subscribes to
version announcements for update information (`subscribe`, `unsubscribe`)
and passes each announcement to `on_version` as a `VersionReport`
(`handle_message`). `topic_for` and `parse_topic` build and split topics.

### `appimaged.mounts`

`read_mounts()` / `parse_mountinfo(text)` read mounted file systems as
`Mount` records; `mount_application_dirs(mounts)` returns the
`Applications` directories on them, warning about volumes mounted with
`showexec`; `existing_directories(candidates)` filters to those that exist.

### `appimaged.systemd`

User service handling: `is_running_systemd()`, `is_invoked_by_systemd()`,
`check_systemd_service_running(patterns)`, `service_file_contents(...)`,
`install_service_file(...)`, `sync_write_file(...)` and
`setup_to_run_through_systemd(executable)`, which returns `True` when
systemd now runs the daemon and the caller should exit.

### `appimaged.filemanager`

`install_context_menus(...)` installs Update entries for GNOME, KDE and
Thunar file managers; `merge_thunar_uca(existing, executable)` adds the
Thunar action to an existing `uca.xml` once.

### `appimaged.prerequisites`

Start-up checks: `check_prerequisites(settings, executable,
watched_directories)` runs them all and raises `SystemExit` on fatal
problems. Individual pieces include `is_live_system`, `read_os_release`,
`check_tools`, `exit_if_binfmt_exists`, `clean_desktop_files`,
`other_instances`, `terminate_other_instances` and `showexec_hint`.

## What this package does not do

It installs no command: there is no executable to start a daemon or to run
the `run`, `start`, `update` and `wrap` verbs from a shell, though
`appimaged.commands.run_command` can be called from Python. It does not
watch directories for AppImages being added or removed, keeps no record of
which AppImages are integrated, and has no loop that scans directories,
rebuilds the menu or reacts to volumes being mounted. Those pieces have to
be assembled by the caller from the functions above.