"""Move resolved paths to the Trash, with safety checks."""

import logging
import os
import shutil
import time
from pathlib import Path

from pydantic import BaseModel, Field

from appsweep.locations import TRASH_DIR, expand_path
from appsweep.scanner import is_in_trash

logger = logging.getLogger(__name__)

# Paths that should NEVER be removed
BLOCKED_PATHS = [
    "~/Documents",
    "~/Desktop",
    "~/Pictures",
    "~/Music",
    "~/Movies",
    "~/Library",
    "~/Library/Application Support",
    "~/Library/Caches",
    "~/Library/Containers",
    "~/Library/Group Containers",
    "~/Library/Preferences",
    "/System",
    "/Library",
    "/Applications",
    "/usr",
    "/bin",
    "/sbin",
    "/var",
    "/private",
    "/Users",
    "~",
    "/",
]


class TrashResult(BaseModel):
    """Outcome of moving a batch of paths to the Trash."""

    success: bool = Field(..., description="Every requested path was handled")
    moved: list[str] = Field(default_factory=list, description="Original paths that were moved")
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = Field(False)


def is_path_safe(path: Path) -> bool:
    """
    Check if a path is safe to remove.

    Args:
        path: Path to check

    Returns:
        True unless the path is one of the blocked locations themselves
    """
    path_str = os.path.normpath(str(path))
    for blocked in BLOCKED_PATHS:
        if path_str == os.path.normpath(str(expand_path(blocked))):
            return False
    return path_str != str(Path.home())


def find_protected(paths: list[str]) -> list[str]:
    """Paths whose parent directory is not writable by the current user."""
    protected = []
    for path in paths:
        parent = os.path.dirname(os.path.normpath(path))
        if os.path.lexists(path) and not os.access(parent, os.W_OK):
            protected.append(path)
    return protected


def _trash_destination(path: Path, trash: Path) -> Path:
    """Unique name in the Trash, like Finder's "name 12.34.56"."""
    destination = trash / path.name
    if not os.path.lexists(destination):
        return destination
    stamp = time.strftime("%H.%M.%S")
    destination = trash / f"{path.stem} {stamp}{path.suffix}"
    counter = 1
    while os.path.lexists(destination):
        destination = trash / f"{path.stem} {stamp} {counter}{path.suffix}"
        counter += 1
    return destination


def move_to_trash(
    paths: list[str],
    dry_run: bool = False,
    trash_dir: Path | None = None,
) -> TrashResult:
    """
    Move each path into the user's Trash.

    Paths already in the Trash, missing paths and blocked paths are not moved.

    Args:
        paths: Paths to move
        dry_run: If True, only report what would be moved
        trash_dir: Trash folder (default: ~/.Trash)

    Returns:
        TrashResult listing moved paths and per-path errors
    """
    trash = trash_dir or expand_path(TRASH_DIR)
    moved = []
    errors = []

    for path_str in paths:
        path = Path(os.path.normpath(path_str))

        if not os.path.lexists(path):
            continue
        if is_in_trash(path):
            continue
        if not is_path_safe(path):
            errors.append(f"Blocked path: {path}")
            continue

        if dry_run:
            moved.append(str(path))
            continue

        try:
            trash.mkdir(parents=True, exist_ok=True)
            shutil.move(str(path), str(_trash_destination(path, trash)))
        except PermissionError as e:
            errors.append(f"{path}: Permission denied: {e}")
            continue
        except (OSError, shutil.Error) as e:
            errors.append(f"{path}: OS error: {e}")
            continue

        logger.debug("Moved %s to the Trash", path)
        moved.append(str(path))

    return TrashResult(success=not errors, moved=moved, errors=errors, dry_run=dry_run)
