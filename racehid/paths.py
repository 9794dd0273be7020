"""Locations of the tool's writable data: logs, CSV records and settings."""

from __future__ import annotations

import functools
import os
import sys
from pathlib import Path

_APP_NAME = "racehid"
_PROBE_NAME = ".air_race_hid_write_probe"


def _is_writable_dir(directory: Path) -> bool:
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe = directory / _PROBE_NAME
        probe.write_bytes(b"")
        probe.unlink()
    except OSError:
        return False
    return True


def _executable_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    argv0 = sys.argv[0] if sys.argv else ""
    if not argv0:
        return Path.cwd()
    return Path(argv0).resolve().parent


def _local_data_location() -> Path:
    if sys.platform.startswith("win"):
        base = os.environ.get("LOCALAPPDATA")
        root = Path(base) if base else Path.home() / "AppData" / "Local"
    elif sys.platform == "darwin":
        root = Path.home() / "Library" / "Application Support"
    else:
        base = os.environ.get("XDG_DATA_HOME")
        root = Path(base) if base else Path.home() / ".local" / "share"
    return root / _APP_NAME


@functools.lru_cache(maxsize=None)
def app_tool_data_root() -> Path:
    """Writable root, preferring the program's own directory over the user data location."""
    exe_dir = _executable_dir()
    if _is_writable_dir(exe_dir):
        return exe_dir.absolute()
    fallback = _local_data_location()
    if _is_writable_dir(fallback):
        return fallback.absolute()
    return exe_dir.absolute()


def app_log_dir(root: Path | None = None) -> Path:
    """The ``Log`` directory under the data root, created if missing."""
    directory = Path(root if root is not None else app_tool_data_root()) / "Log"
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def app_data_dir(root: Path | None = None) -> Path:
    """The ``Data`` directory under the data root, created if missing."""
    directory = Path(root if root is not None else app_tool_data_root()) / "Data"
    directory.mkdir(parents=True, exist_ok=True)
    return directory