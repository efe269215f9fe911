"""Turn raw matches into a final ResolutionResult."""

import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional

from appsweep.models import AppDescriptor, Candidate, ResolutionResult
from appsweep.scanner import SizeLookup, is_directory, is_in_trash

logger = logging.getLogger(__name__)


def _key(path: Path | str) -> str:
    return os.path.normpath(str(path))


class CandidateSet:
    """Paths accumulated by concurrent root scans, guarded by a single lock."""

    def __init__(self, paths: Iterable[Path | str] = ()) -> None:
        self._lock = threading.Lock()
        self._paths: dict[str, None] = {}
        for path in paths:
            self._paths[_key(path)] = None

    def add(self, path: Path | str) -> bool:
        """Add a path. Returns False if it was already present."""
        key = _key(path)
        with self._lock:
            if key in self._paths:
                return False
            self._paths[key] = None
            return True

    def update(self, paths: Iterable[Path | str]) -> int:
        """Add many paths at once; returns how many were new."""
        keys = [_key(p) for p in paths]
        added = 0
        with self._lock:
            for key in keys:
                if key not in self._paths:
                    self._paths[key] = None
                    added += 1
        return added

    def discard(self, path: Path | str) -> None:
        with self._lock:
            self._paths.pop(_key(path), None)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        key = _key(path)
        with self._lock:
            return key in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)

    def snapshot(self) -> list[str]:
        """Copy of the accumulated paths in insertion order."""
        with self._lock:
            return list(self._paths)


def is_descendant(path: str, ancestor: str) -> bool:
    """True if ``path`` lies strictly below ``ancestor``."""
    prefix = ancestor if ancestor.endswith(os.sep) else ancestor + os.sep
    return path != ancestor and path.startswith(prefix)


def collapse_paths(paths: Iterable[Path | str]) -> list[str]:
    """
    Deduplicate, sort and drop every path nested under another kept path.

    >>> collapse_paths(["/A/B/C", "/A", "/A/B"])
    ['/A']
    """
    ordered = sorted({_key(p) for p in paths})
    kept: list[str] = []
    kept_set: set[str] = set()
    for path in ordered:
        # "/A B" sorts between "/A" and "/A/B", so check every ancestor, not just the last kept path
        if any(str(parent) in kept_set for parent in Path(path).parents):
            continue
        kept.append(path)
        kept_set.add(path)
    return kept


def drop_lone_trash_item(paths: list[str]) -> list[str]:
    """A result consisting only of one already-trashed item is empty."""
    if len(paths) == 1 and is_in_trash(paths[0]):
        return []
    return paths


def assemble_result(
    paths: Iterable[Path | str],
    app: Optional[AppDescriptor] = None,
    size_lookup: Optional[SizeLookup] = None,
    cancelled: bool = False,
) -> ResolutionResult:
    """
    Build the final result: collapse, Trash suppression, optional size/icon details.

    Args:
        paths: Raw matched paths (may contain duplicates and nested paths)
        app: App the paths were resolved for, None for orphans
        size_lookup: Called once per surviving path; None skips sizes
        cancelled: Whether the producing scan was stopped early
    """
    collapsed = drop_lone_trash_item(collapse_paths(paths))

    candidates = []
    for path_str in collapsed:
        path = Path(path_str)
        candidate = Candidate(path=path_str, is_dir=is_directory(path))
        if size_lookup is not None:
            try:
                real_size, logical_size, icon = size_lookup(path)
            except (PermissionError, OSError) as e:
                logger.debug("Size lookup failed for %s: %s", path, e)
            else:
                candidate = candidate.model_copy(
                    update={"real_size": real_size, "logical_size": logical_size, "icon": icon}
                )
        candidates.append(candidate)

    return ResolutionResult(candidates=candidates, app=app, cancelled=cancelled)
