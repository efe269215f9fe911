"""Sandbox and App Group container lookup.

Sandboxed apps keep private data in ``~/Library/Containers``. Some of those
folders are named after a UUID instead of the bundle identifier; the owner
is then only recorded in a hidden metadata plist inside the folder.
"""

import logging
import os
import plistlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from appsweep.identifiers import is_uuid_name
from appsweep.locations import CONTAINERS_ROOT, GROUP_CONTAINERS_ROOT, expand_path
from appsweep.models import AppDescriptor

logger = logging.getLogger(__name__)

CONTAINER_METADATA_FILE = ".com.apple.containermanagerd.metadata.plist"
METADATA_IDENTIFIER_KEY = "MCMMetadataIdentifier"


def read_container_owner(container: Path) -> Optional[str]:
    """
    Bundle identifier recorded in a container's metadata plist.

    Returns None when the file is missing, unreadable or malformed.
    """
    metadata = container / CONTAINER_METADATA_FILE
    try:
        with open(metadata, "rb") as f:
            data = plistlib.load(f)
    except FileNotFoundError:
        return None
    except (OSError, plistlib.InvalidFileException, ValueError) as e:
        logger.debug("Unreadable container metadata %s: %s", metadata, e)
        return None

    if not isinstance(data, dict):
        logger.debug("Unexpected container metadata layout in %s", metadata)
        return None

    owner = data.get(METADATA_IDENTIFIER_KEY)
    if not isinstance(owner, str) or not owner:
        return None
    return owner


def build_container_index(root: Path, uuid_only: bool = True) -> dict[str, str]:
    """
    Map container folder paths under ``root`` to their owning bundle identifier.

    Built fresh on every call; hidden entries are ignored.

    Args:
        root: Containers directory to index
        uuid_only: Only index UUID-named folders
    """
    index: dict[str, str] = {}
    try:
        with os.scandir(root) as entries:
            children = [(entry.name, entry.path) for entry in entries]
    except (PermissionError, OSError) as e:
        logger.debug("Cannot list containers in %s: %s", root, e)
        return index

    for name, path in children:
        if name.startswith("."):
            continue
        if uuid_only and not is_uuid_name(name):
            continue
        owner = read_container_owner(Path(path))
        if owner:
            index[os.path.normpath(path)] = owner
    return index


@dataclass
class ContainerLocator:
    """Finds the container folders that belong to an app."""

    containers_root: Path = field(default_factory=lambda: expand_path(CONTAINERS_ROOT))
    group_containers_root: Path = field(
        default_factory=lambda: expand_path(GROUP_CONTAINERS_ROOT)
    )

    def group_containers(self, app: AppDescriptor) -> list[Path]:
        """Existing App Group containers for the app's identifier and declared groups."""
        group_ids = []
        if app.bundle_identifier:
            group_ids.append(app.bundle_identifier)
        group_ids.extend(g for g in app.app_groups if g and g not in group_ids)

        found = []
        for group_id in group_ids:
            candidate = self.group_containers_root / group_id
            if candidate.exists():
                found.append(candidate)
        return found

    def sandbox_containers(self, app: AppDescriptor) -> list[Path]:
        """UUID-named containers whose metadata names the app as owner."""
        if not app.bundle_identifier:
            return []
        index = build_container_index(self.containers_root, uuid_only=True)
        return sorted(
            Path(path) for path, owner in index.items() if owner == app.bundle_identifier
        )

    def locate(self, app: AppDescriptor) -> list[Path]:
        """All container paths for ``app``."""
        return self.group_containers(app) + self.sandbox_containers(app)

    def owner_index(self) -> dict[str, str]:
        """Path -> owner for every container with metadata, UUID-named or not."""
        index = build_container_index(self.containers_root, uuid_only=False)
        index.update(build_container_index(self.group_containers_root, uuid_only=False))
        return index

    @property
    def roots(self) -> list[Path]:
        return [self.containers_root, self.group_containers_root]
