"""Forward resolution: every path that plausibly belongs to one app."""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from appsweep.assembler import CandidateSet, assemble_result
from appsweep.containers import ContainerLocator
from appsweep.identifiers import AppIdentifiers, normalize
from appsweep.models import AppDescriptor, ResolutionResult
from appsweep.rules import RuleSnapshot, RuleTable, forced_paths
from appsweep.scanner import SizeLookup, is_in_trash, is_supported_file_type, list_directory, path_details

logger = logging.getLogger(__name__)


class ResolutionState(str, Enum):
    """Phases of a forward resolution pass."""

    INIT = "init"
    SCANNING_ROOTS = "scanning_roots"
    LOCATING_CONTAINERS = "locating_containers"
    MERGING = "merging"
    COLLAPSING = "collapsing"
    DONE = "done"


def seed_bundle_path(bundle_path: str) -> Optional[Path]:
    """
    Path to seed the candidate set with.

    Wrapped iOS apps (``Foo.app/Wrapper/Foo.app``) are uninstalled through the
    outer bundle. Bundles already in the Trash are never seeded.
    """
    if not bundle_path:
        return None
    path = Path(os.path.normpath(bundle_path))
    if is_in_trash(path):
        return None
    if path.parent.name == "Wrapper":
        return path.parent.parent
    return path


class AppPathFinder:
    """
    Find the bundle, support files, caches, preferences and containers of one app.

    Roots are scanned concurrently, one task per root; matches land in a
    single lock-guarded CandidateSet.
    """

    def __init__(
        self,
        app: AppDescriptor,
        rules: RuleTable,
        search_roots: list[Path],
        locator: Optional[ContainerLocator] = None,
        strict_names: bool = False,
        max_workers: int = 8,
        size_lookup: Optional[SizeLookup] = path_details,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.app = app
        self.rules = rules
        self.search_roots = search_roots
        self.locator = locator or ContainerLocator()
        self.strict_names = strict_names
        self.max_workers = max_workers
        self.size_lookup = size_lookup
        self.stop_event = stop_event or threading.Event()
        self.state = ResolutionState.INIT
        self.identifiers = AppIdentifiers.from_descriptor(app)
        self._collection = CandidateSet()

    def cancel(self) -> None:
        """Stop scanning further roots and entries."""
        self.stop_event.set()

    def find_paths(
        self,
        progress_callback: Callable[[str, int, int], None] | None = None,
    ) -> ResolutionResult:
        """
        Run the full pass and return the assembled result.

        Args:
            progress_callback: Optional callback(root, current, total) per finished root
        """
        with self.rules.reading() as snapshot:
            self._seed()

            # Web apps keep everything under their bundle id, found via containers
            if not self.app.is_web_app:
                self.state = ResolutionState.SCANNING_ROOTS
                self._scan_roots(snapshot, progress_callback)

            self.state = ResolutionState.LOCATING_CONTAINERS
            containers = self.locator.locate(self.app)

            self.state = ResolutionState.MERGING
            merged = self._merge(snapshot, containers)

        self.state = ResolutionState.COLLAPSING
        result = assemble_result(
            merged,
            app=self.app,
            size_lookup=self.size_lookup,
            cancelled=self.stop_event.is_set(),
        )
        self.state = ResolutionState.DONE
        logger.debug("Resolved %d paths for %s", result.count, self.app.display_name)
        return result

    def _seed(self) -> None:
        seed = seed_bundle_path(self.app.bundle_path)
        if seed is not None:
            self._collection.add(seed)

    def _scan_roots(
        self,
        snapshot: RuleSnapshot,
        progress_callback: Callable[[str, int, int], None] | None,
    ) -> None:
        roots = [r for r in self.search_roots if r.is_dir()]
        total = len(roots)

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_root = {
                executor.submit(self._scan_root, root, snapshot): root for root in roots
            }

            for i, future in enumerate(as_completed(future_to_root)):
                root = future_to_root[future]
                if progress_callback:
                    progress_callback(str(root), i + 1, total)
                try:
                    matches = future.result()
                except (PermissionError, OSError) as e:
                    logger.debug("Skipping root %s: %s", root, e)
                    continue
                self._collection.update(matches)

    def _scan_root(self, root: Path, snapshot: RuleSnapshot) -> list[Path]:
        """Match the immediate children of one root; runs in a worker thread."""
        matches = []
        for item in list_directory(root):
            if self.stop_event.is_set():
                break
            if self.should_skip(item, snapshot):
                continue
            if snapshot.accepts(normalize(item.name), self.identifiers, self.strict_names):
                matches.append(item)
        return matches

    def should_skip(self, item: Path, snapshot: RuleSnapshot) -> bool:
        """Skip table, already-collected and file type checks."""
        if snapshot.is_skipped(normalize(item.name)):
            return True
        if item in self._collection:
            return True
        return not is_supported_file_type(item)

    def _merge(self, snapshot: RuleSnapshot, containers: list[Path]) -> list[str]:
        """Union scan results, containers and forced paths, then drop forced exclusions."""
        include_force, exclude_force = forced_paths(snapshot.conditions_for(self.identifiers))

        merged = CandidateSet(self._collection.snapshot())
        merged.update(containers)
        merged.update(p for p in include_force if os.path.lexists(p))
        for path in exclude_force:
            merged.discard(path)
        return merged.snapshot()


def find_app_paths(
    app: AppDescriptor,
    rules: RuleTable,
    search_roots: list[Path],
    **kwargs,
) -> ResolutionResult:
    """Convenience wrapper around AppPathFinder.find_paths()."""
    return AppPathFinder(app, rules, search_roots, **kwargs).find_paths()
