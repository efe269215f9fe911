"""Reverse resolution: leftovers that belong to no installed app."""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

from appsweep.assembler import CandidateSet, assemble_result
from appsweep.containers import ContainerLocator
from appsweep.identifiers import AppIdentifiers, is_uuid_name, normalize
from appsweep.models import AppDescriptor, Condition, ResolutionResult
from appsweep.rules import RuleSnapshot, RuleTable, evaluate_conditions, forced_paths
from appsweep.scanner import SizeLookup, is_supported_file_type, list_directory

logger = logging.getLogger(__name__)

BatchCallback = Callable[[list[str]], None]


class OrphanState(str, Enum):
    INIT = "init"
    SCANNING_RESIDUE_ROOTS = "scanning_residue_roots"
    DONE = "done"


@dataclass
class InstalledIndex:
    """Everything known about installed apps, precomputed once per pass."""

    apps: list[AppIdentifiers] = field(default_factory=list)
    entitlements: set[str] = field(default_factory=set)
    forced_paths: set[str] = field(default_factory=set)
    identifiers: set[str] = field(default_factory=set)
    container_owners: dict[str, str] = field(default_factory=dict)
    claims: list[Condition] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        installed: Iterable[AppDescriptor],
        snapshot: RuleSnapshot,
        locator: ContainerLocator,
    ) -> "InstalledIndex":
        index = cls()
        for app in installed:
            ids = AppIdentifiers.from_descriptor(app)
            index.apps.append(ids)
            if app.bundle_identifier:
                index.identifiers.add(app.bundle_identifier)
            index.entitlements.update(
                token for token in (normalize(s) for s in app.entitlement_strings) if token
            )

            claims = snapshot.claims_for(ids)
            index.claims.extend(claims)
            includes, _ = forced_paths(claims)
            index.forced_paths.update(includes)

        index.container_owners = locator.owner_index()
        return index

    def owns(self, entry: str, path: Path) -> bool:
        """True if any installed app would claim this entry in a forward pass."""
        for ids in self.apps:
            # Generic heuristic; web-app narrowing only limits forward results
            if any(token in entry for token in ids.identifier_tokens + ids.name_tokens):
                return True

        if any(token in entry for token in self.entitlements):
            return True

        key = os.path.normpath(str(path))
        if key in self.forced_paths:
            return True

        owner = self.container_owners.get(key)
        return owner is not None and owner in self.identifiers

    def claimed_by_condition(self, entry: str) -> bool:
        """
        True if some condition of an installed app, taken on its own, has an
        include hit and no exclude hit for ``entry``.
        """
        return any(evaluate_conditions(entry, (condition,)) is True for condition in self.claims)


class _BatchStream:
    """
    Collects new orphan paths and hands them to ``on_batch`` in fixed-size
    batches from whichever scan thread fills a batch. Calls are serialized
    and stop once the pass is cancelled.
    """

    def __init__(self, on_batch: Optional[BatchCallback], batch_size: int, stop_event: threading.Event) -> None:
        self.on_batch = on_batch
        self.batch_size = batch_size
        self.stop_event = stop_event
        self._lock = threading.Lock()
        self._pending: list[str] = []

    def push(self, path: str) -> None:
        if self.on_batch is None:
            return
        with self._lock:
            self._pending.append(path)
            if len(self._pending) >= self.batch_size:
                self._flush_locked()

    def flush(self) -> None:
        with self._lock:
            self._flush_locked()

    def _flush_locked(self) -> None:
        batch, self._pending = self._pending, []
        if batch and self.on_batch and not self.stop_event.is_set():
            self.on_batch(batch)


class OrphanFinder:
    """
    Find entries in residue roots that no installed app owns.

    Results are either buffered until the end or streamed to ``on_batch`` in
    fixed-size batches. ``cancel()`` stops the scan between entries; whatever
    was already found is still returned.
    """

    def __init__(
        self,
        installed: list[AppDescriptor],
        rules: RuleTable,
        residue_roots: list[Path],
        locator: Optional[ContainerLocator] = None,
        exclusions: Iterable[str] = (),
        max_workers: int = 8,
        batch_size: int = 50,
        size_lookup: Optional[SizeLookup] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.installed = installed
        self.rules = rules
        self.residue_roots = residue_roots
        self.locator = locator or ContainerLocator()
        self.exclusions = [
            os.path.normpath(os.path.expanduser(e)) for e in exclusions if e and e.strip()
        ]
        self.max_workers = max_workers
        self.batch_size = max(1, batch_size)
        self.size_lookup = size_lookup
        self.stop_event = stop_event or threading.Event()
        self.state = OrphanState.INIT

    def cancel(self) -> None:
        self.stop_event.set()

    @property
    def cancelled(self) -> bool:
        return self.stop_event.is_set()

    def find_orphans(self, on_batch: Optional[BatchCallback] = None) -> ResolutionResult:
        """
        Scan every residue root and return the collapsed orphan set.

        Args:
            on_batch: Called with each full batch of new orphan paths as soon
                as it fills, and once more with the final partial batch.
                May run on a scan thread; calls never overlap and stop after
                ``cancel()``. Batches carry paths as found, before the nested
                path collapse applied to the returned result. Buffer-all mode
                when None.

        Returns:
            ResolutionResult with ``app=None``
        """
        found = CandidateSet()
        stream = _BatchStream(on_batch, self.batch_size, self.stop_event)

        with self.rules.reading() as snapshot:
            index = InstalledIndex.build(self.installed, snapshot, self.locator)
            roots = [r for r in self.residue_roots if r.is_dir()]
            self.state = OrphanState.SCANNING_RESIDUE_ROOTS

            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                future_to_root = {
                    executor.submit(self._scan_root, root, snapshot, index, found, stream): root
                    for root in roots
                }
                for future in as_completed(future_to_root):
                    root = future_to_root[future]
                    try:
                        future.result()
                    except (PermissionError, OSError) as e:
                        logger.debug("Skipping residue root %s: %s", root, e)

        stream.flush()
        self.state = OrphanState.DONE

        result = assemble_result(
            found.snapshot(),
            size_lookup=self.size_lookup,
            cancelled=self.cancelled,
        )
        logger.debug("Found %d orphaned paths", result.count)
        return result

    def _scan_root(
        self,
        root: Path,
        snapshot: RuleSnapshot,
        index: InstalledIndex,
        found: CandidateSet,
        stream: _BatchStream,
    ) -> int:
        """Record the children of one residue root that survive every ownership check."""
        added = 0
        for item in list_directory(root):
            if self.cancelled:
                break
            if not self.is_orphan(item, snapshot, index):
                continue
            if found.add(item):
                added += 1
                stream.push(os.path.normpath(str(item)))
        return added

    def is_orphan(self, item: Path, snapshot: RuleSnapshot, index: InstalledIndex) -> bool:
        """Apply the rejection checks in order; True only if none fires."""
        if self.is_excluded(item):
            return False

        if is_uuid_name(item.name):
            return False

        entry = normalize(item.name)
        if not entry or snapshot.is_orphan_skipped(entry):
            return False

        if not is_supported_file_type(item):
            return False

        if index.owns(entry, item):
            return False

        if index.claimed_by_condition(entry):
            return False

        return True

    def is_excluded(self, item: Path) -> bool:
        """User exclusion list: exact path or substring match."""
        path_str = os.path.normpath(str(item))
        for exclusion in self.exclusions:
            if path_str == exclusion or exclusion in path_str:
                return True
        return False


def find_orphaned_paths(
    installed: list[AppDescriptor],
    rules: RuleTable,
    residue_roots: list[Path],
    **kwargs,
) -> ResolutionResult:
    """Convenience wrapper around OrphanFinder.find_orphans() in buffer-all mode."""
    return OrphanFinder(installed, rules, residue_roots, **kwargs).find_orphans()
