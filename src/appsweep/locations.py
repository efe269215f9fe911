"""Where appsweep looks: search roots, residue roots and app folders."""

import logging
import os
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

# Roots whose immediate children are matched against one app (forward search)
SEARCH_ROOTS = [
    "~",
    "~/.config",
    "~/Documents",
    "~/Desktop",
    "~/Applications",
    "~/Library",
    "~/Library/Application Scripts",
    "~/Library/Application Support",
    "~/Library/Application Support/Steam/steamapps",
    "~/Library/Application Support/Steam/steamapps/common",
    "~/Library/Application Support/com.apple.sharedfilelist/com.apple.LSSharedFileList.ApplicationRecentDocuments",
    "~/Library/Containers",
    "~/Library/Caches",
    "~/Library/Caches/com.crashlytics",
    "~/Library/Caches/com.google.SoftwareUpdate",
    "~/Library/Caches/com.google.Keystone",
    "~/Library/Caches/org.sparkle-project.Sparkle",
    "~/Library/Caches/com.segment.analytics",
    "~/Library/Caches/SentryCrash",
    "~/Library/Caches/Rollbar",
    "~/Library/Caches/Amplitude",
    "~/Library/Caches/Realm",
    "~/Library/Caches/Parse",
    "~/Library/Group Containers",
    "~/Library/HTTPStorages",
    "~/Library/Internet Plug-Ins",
    "~/Library/LaunchAgents",
    "~/Library/Logs",
    "~/Library/Logs/DiagnosticReports",
    "~/Library/Preferences",
    "~/Library/PreferencePanes",
    "~/Library/Preferences/ByHost",
    "~/Library/Saved Application State",
    "~/Library/Services",
    "~/Library/WebKit",
    "/Applications",
    "/Users/Shared",
    "/Users/Library",
    "/Users/Shared/Library/Application Support",
    "/Library",
    "/Library/Application Support",
    "/Library/Application Support/CrashReporter",
    "/Library/Caches",
    "/Library/Extensions",
    "/Library/Internet Plug-Ins",
    "/Library/LaunchAgents",
    "/Library/LaunchDaemons",
    "/Library/Logs",
    "/Library/Logs/DiagnosticReports",
    "/Library/Preferences",
    "/Library/PrivilegedHelperTools",
    "/private/var/db/receipts",
    "/private/tmp",
    "/usr/local/bin",
    "/usr/local/etc",
    "/usr/local/opt",
    "/usr/local/sbin",
    "/usr/local/share",
    "/usr/local/var",
]

# Roots scanned for entries that belong to no installed app (orphan search)
RESIDUE_ROOTS = [
    "~/Library/Application Scripts",
    "~/Library/Application Support",
    "~/Library/Application Support/Caches",
    "~/Library/Application Support/com.apple.sharedfilelist/com.apple.LSSharedFileList.ApplicationRecentDocuments",
    "~/Library/Containers",
    "~/Library/Caches",
    "~/Library/HTTPStorages",
    "~/Library/Internet Plug-Ins",
    "~/Library/LaunchAgents",
    "~/Library/Logs",
    "~/Library/Preferences",
    "~/Library/PreferencePanes",
    "~/Library/Preferences/ByHost",
    "~/Library/Saved Application State",
    "~/Library/WebKit",
    "/Users/Shared/Library/Application Support",
    "/Library/Application Support",
    "/Library/Application Support/CrashReporter",
    "/Library/Internet Plug-Ins",
    "/Library/LaunchAgents",
    "/Library/LaunchDaemons",
    "/Library/PrivilegedHelperTools",
]

APP_FOLDERS = ["/Applications", "~/Applications"]

CONTAINERS_ROOT = "~/Library/Containers"
GROUP_CONTAINERS_ROOT = "~/Library/Group Containers"
TRASH_DIR = "~/.Trash"

# Application Support subfolders never searched one level deeper
APP_SUPPORT_EXCLUSIONS = frozenset(
    {
        "MobileSync",
        ".DS_Store",
        "Xcode",
        "SyncServices",
        "networkserviceproxy",
        "DiskImages",
        "CallHistoryTransactions",
        "App Store",
        "CloudDocs",
        "icdd",
        "iCloud",
        "Instruments",
        "AddressBook",
        "FaceTime",
        "AskPermission",
        "CallHistoryDB",
    }
)

_APPLE_FOLDER = re.compile(r"\bcom\.apple\b")


def expand_path(path: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expanduser(os.path.expandvars(path)))


def darwin_user_dirs() -> list[str]:
    """
    Per-user cache and temp directories (DARWIN_USER_CACHE_DIR / _TEMP_DIR).

    Returns an empty list where getconf does not know these keys.
    """
    dirs = []
    for key in ("DARWIN_USER_CACHE_DIR", "DARWIN_USER_TEMP_DIR"):
        try:
            result = subprocess.run(
                ["getconf", key],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("getconf %s failed: %s", key, e)
            continue
        value = result.stdout.strip()
        if result.returncode == 0 and value:
            dirs.append(value.rstrip("/"))
    return dirs


def app_support_subfolders(app_support: Path | None = None) -> list[Path]:
    """Application Support subfolders worth searching one level deeper."""
    if app_support is None:
        app_support = expand_path("~/Library/Application Support")

    folders = []
    try:
        with os.scandir(app_support) as entries:
            for entry in entries:
                try:
                    if not entry.is_dir(follow_symlinks=False):
                        continue
                except OSError:
                    continue
                if entry.name in APP_SUPPORT_EXCLUSIONS or _APPLE_FOLDER.search(entry.name):
                    continue
                folders.append(Path(entry.path))
    except (PermissionError, OSError) as e:
        logger.debug("Cannot list %s: %s", app_support, e)
        return []

    return sorted(folders)


def _dedupe(paths: list[Path]) -> list[Path]:
    seen: set[str] = set()
    unique = []
    for path in paths:
        key = os.path.normpath(str(path))
        if key in seen:
            continue
        seen.add(key)
        unique.append(Path(key))
    return unique


def get_search_roots(extra: list[str] | None = None, deep: bool = True) -> list[Path]:
    """
    Forward search roots: built-ins, Darwin user dirs, extras.

    With ``deep`` the Application Support subfolders are added as roots too.
    """
    roots = [expand_path(p) for p in SEARCH_ROOTS]
    roots.extend(Path(p) for p in darwin_user_dirs())
    if deep:
        roots.extend(app_support_subfolders())
    roots.extend(expand_path(p) for p in extra or [])
    return _dedupe(roots)


def get_residue_roots(extra: list[str] | None = None) -> list[Path]:
    """Orphan search roots: built-ins plus extras."""
    roots = [expand_path(p) for p in RESIDUE_ROOTS]
    roots.extend(expand_path(p) for p in extra or [])
    return _dedupe(roots)
