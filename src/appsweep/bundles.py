"""Read app bundle metadata and enumerate installed apps."""

import logging
import os
import plistlib
import re
import subprocess
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from appsweep.locations import APP_FOLDERS, expand_path
from appsweep.models import AppDescriptor

logger = logging.getLogger(__name__)

APP_GROUPS_KEY = "com.apple.security.application-groups"

# "ABCDE12345.com.example.app" -> "com.example.app"
_TEAM_PREFIX = re.compile(r"^[A-Z0-9]{10}\.")


def _read_plist(path: Path) -> Optional[dict[str, Any]]:
    try:
        with open(path, "rb") as f:
            data = plistlib.load(f)
    except FileNotFoundError:
        return None
    except (OSError, plistlib.InvalidFileException, ValueError) as e:
        logger.debug("Unreadable plist %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def _wrapped_bundle(path: Path) -> Optional[Path]:
    """Inner bundle of an iOS app installed as ``Foo.app/Wrapper/Foo.app``."""
    wrapper = path / "Wrapper"
    if not wrapper.is_dir():
        return None
    try:
        inner = sorted(p for p in wrapper.iterdir() if p.suffix == ".app")
    except (PermissionError, OSError) as e:
        logger.debug("Cannot list %s: %s", wrapper, e)
        return None
    return inner[0] if inner else None


def _info_plist(bundle: Path) -> Optional[dict[str, Any]]:
    # iOS bundles keep Info.plist at the top level, macOS bundles under Contents
    info = _read_plist(bundle / "Contents" / "Info.plist")
    if info is None:
        info = _read_plist(bundle / "Info.plist")
    return info


def _collect_strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [s for item in value for s in _collect_strings(item)]
    if isinstance(value, dict):
        return [s for item in value.values() for s in _collect_strings(item)]
    return []


def parse_entitlements(data: bytes) -> tuple[list[str], list[str]]:
    """
    Extract identifier-like strings and App Groups from an entitlements plist.

    Args:
        data: Raw XML plist as printed by ``codesign --entitlements :-``

    Returns:
        Tuple of (entitlement_strings, app_groups)
    """
    if not data or not data.strip():
        return [], []
    try:
        entitlements = plistlib.loads(data)
    except (plistlib.InvalidFileException, ValueError) as e:
        logger.debug("Malformed entitlements: %s", e)
        return [], []
    if not isinstance(entitlements, dict):
        return [], []

    groups = [g for g in _collect_strings(entitlements.get(APP_GROUPS_KEY, [])) if g]

    strings = []
    for value in _collect_strings(entitlements):
        value = _TEAM_PREFIX.sub("", value.strip())
        # Only dotted identifiers are specific enough to claim files
        if "." not in value or "$(" in value or "*" in value:
            continue
        if value not in strings:
            strings.append(value)
    return strings, groups


def read_entitlements(bundle: Path) -> tuple[list[str], list[str]]:
    """Entitlement strings and App Groups of a signed bundle; empty when unsigned or unavailable."""
    try:
        result = subprocess.run(
            ["codesign", "-d", "--entitlements", ":-", str(bundle)],
            capture_output=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("codesign failed for %s: %s", bundle, e)
        return [], []
    if result.returncode != 0:
        return [], []
    return parse_entitlements(result.stdout)


def read_app_descriptor(path: Path, with_entitlements: bool = False) -> Optional[AppDescriptor]:
    """
    Build an AppDescriptor from an .app bundle.

    Wrapped iOS apps are described through their inner bundle. Bundles
    without a readable Info.plist yield None.

    Args:
        path: Path to the .app bundle
        with_entitlements: Also read code signature entitlements (spawns codesign)

    Returns:
        AppDescriptor or None
    """
    path = Path(os.path.normpath(str(path)))
    inner = _wrapped_bundle(path)
    bundle = inner or path

    info = _info_plist(bundle)
    if info is None:
        logger.debug("No Info.plist in %s", bundle)
        return None

    identifier = info.get("CFBundleIdentifier")
    identifier = identifier.strip() if isinstance(identifier, str) else ""

    display_name = path.stem
    if display_name:
        display_name = display_name[0].upper() + display_name[1:]

    version = info.get("CFBundleShortVersionString") or info.get("CFBundleVersion") or ""

    entitlement_strings: list[str] = []
    app_groups: list[str] = []
    if with_entitlements:
        entitlement_strings, app_groups = read_entitlements(bundle)

    return AppDescriptor(
        bundle_identifier=identifier,
        display_name=display_name,
        bundle_path=str(bundle),
        is_web_app=info.get("LSTemplateApplication") is True,
        entitlement_strings=entitlement_strings,
        app_groups=app_groups,
        version=str(version),
        is_wrapped=inner is not None,
    )


def _list_bundles(folder: Path) -> list[Path]:
    """.app bundles directly in ``folder`` and one level of subfolders."""
    bundles = []
    try:
        children = sorted(folder.iterdir())
    except (PermissionError, OSError) as e:
        logger.debug("Cannot list app folder %s: %s", folder, e)
        return bundles

    for child in children:
        if child.suffix == ".app":
            bundles.append(child)
            continue
        if child.is_dir() and not child.is_symlink():
            try:
                bundles.extend(sorted(p for p in child.iterdir() if p.suffix == ".app"))
            except (PermissionError, OSError):
                continue
    return bundles


def find_installed_apps(
    folders: list[str] | None = None,
    with_entitlements: bool = False,
    max_workers: int = 8,
) -> list[AppDescriptor]:
    """
    Describe every app bundle in the app folders.

    Args:
        folders: App folders to walk (default: /Applications, ~/Applications)
        with_entitlements: Read entitlements for each app
        max_workers: Parallel bundle readers

    Returns:
        Descriptors sorted by display name, one per bundle path
    """
    bundles: list[Path] = []
    for folder in folders if folders is not None else APP_FOLDERS:
        bundles.extend(_list_bundles(expand_path(folder)))

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        descriptors = list(
            executor.map(lambda b: read_app_descriptor(b, with_entitlements), bundles)
        )

    seen: set[str] = set()
    apps = []
    for app in descriptors:
        if app is None or app.bundle_path in seen:
            continue
        seen.add(app.bundle_path)
        apps.append(app)
    return sorted(apps, key=lambda a: a.display_name.lower())


def find_app(
    query: str,
    apps: list[AppDescriptor],
) -> Optional[AppDescriptor]:
    """
    Resolve a CLI argument to an installed app.

    Accepts a bundle path, a bundle identifier or a display name
    (case-insensitive, with or without ``.app``).
    """
    if query.endswith(".app") and os.path.sep in query:
        path = expand_path(query)
        if path.exists():
            return read_app_descriptor(path)

    wanted = query[: -len(".app")] if query.endswith(".app") else query
    for app in apps:
        if app.bundle_identifier and app.bundle_identifier.lower() == wanted.lower():
            return app
    for app in apps:
        if app.display_name.lower() == wanted.lower():
            return app
    return None
