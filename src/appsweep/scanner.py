"""Filesystem helpers for appsweep: directory listing, file types, sizes, icons."""

import logging
import os
import plistlib
import stat
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# path -> (real_bytes, logical_bytes, icon_handle)
SizeLookup = Callable[[Path], tuple[int, int, Optional[str]]]

TRASH_MARKERS = (".Trash", ".Trashes")


def list_directory(root: Path) -> list[Path]:
    """
    Immediate children of ``root``.

    A missing or unreadable root yields an empty list.
    """
    try:
        with os.scandir(root) as entries:
            return [Path(entry.path) for entry in entries]
    except (PermissionError, OSError) as e:
        logger.debug("Skipping root %s: %s", root, e)
        return []


def is_supported_file_type(path: Path) -> bool:
    """True for regular files, directories and symlinks; sockets, pipes and devices are never candidates."""
    try:
        mode = os.lstat(path).st_mode
    except (PermissionError, OSError):
        return False
    return stat.S_ISREG(mode) or stat.S_ISDIR(mode) or stat.S_ISLNK(mode)


def is_directory(path: Path) -> bool:
    try:
        return stat.S_ISDIR(os.lstat(path).st_mode)
    except (PermissionError, OSError):
        return False


def is_in_trash(path: Path | str) -> bool:
    """True if any component of the path is a Trash folder."""
    return any(part in TRASH_MARKERS for part in Path(path).parts)


def get_directory_size_fast(path: Path, max_depth: int = 20) -> tuple[int, int]:
    """
    Directory size using os.scandir with a depth limit.

    Symlinks are counted as themselves, never followed.

    Args:
        path: Directory to scan
        max_depth: Maximum recursion depth (default: 20)

    Returns:
        Tuple of (real_bytes, logical_bytes); real bytes are allocated blocks
    """
    real_size = 0
    logical_size = 0

    def _scan(p: Path, depth: int):
        nonlocal real_size, logical_size
        if depth > max_depth:
            return
        try:
            with os.scandir(p) as entries:
                for entry in entries:
                    try:
                        st = entry.stat(follow_symlinks=False)
                        real_size += getattr(st, "st_blocks", 0) * 512
                        logical_size += st.st_size
                        if entry.is_dir(follow_symlinks=False):
                            _scan(Path(entry.path), depth + 1)
                    except (PermissionError, OSError):
                        continue
        except (PermissionError, OSError):
            pass

    _scan(path, 0)
    return real_size, logical_size


def disk_footprint(path: Path) -> tuple[int, int]:
    """
    Real (allocated) and logical size of a file or directory tree.

    Returns (0, 0) for paths that cannot be read.
    """
    try:
        st = os.lstat(path)
    except (PermissionError, OSError):
        return 0, 0

    real_size = getattr(st, "st_blocks", 0) * 512
    logical_size = st.st_size
    if stat.S_ISDIR(st.st_mode):
        sub_real, sub_logical = get_directory_size_fast(path)
        real_size += sub_real
        logical_size += sub_logical
    return real_size, logical_size


def bundle_icon(path: Path) -> Optional[str]:
    """Path of an app bundle's .icns file, if it declares one."""
    if path.suffix != ".app":
        return None

    info_plist = path / "Contents" / "Info.plist"
    try:
        with open(info_plist, "rb") as f:
            info = plistlib.load(f)
    except (OSError, plistlib.InvalidFileException, ValueError):
        return None

    icon_name = info.get("CFBundleIconFile")
    if not isinstance(icon_name, str) or not icon_name:
        return None
    if not icon_name.endswith(".icns"):
        icon_name += ".icns"

    icon_path = path / "Contents" / "Resources" / icon_name
    return str(icon_path) if icon_path.exists() else None


def path_details(path: Path) -> tuple[int, int, Optional[str]]:
    """Default size/icon lookup: (real_bytes, logical_bytes, icon_handle)."""
    real_size, logical_size = disk_footprint(path)
    return real_size, logical_size, bundle_icon(path)
