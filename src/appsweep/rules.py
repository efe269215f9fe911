"""Ownership rules for appsweep: conditions, skip rules and their evaluation."""

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from appsweep.identifiers import AppIdentifiers, normalize
from appsweep.models import Condition, SkipRule

# =============================================================================
# Built-in conditions: apps whose leftovers don't look like their name or id
# =============================================================================

CONDITIONS: list[Condition] = [
    Condition(
        key="comappledtxcode",
        include=["comappledt", "xcode", "simulator"],
        exclude=[
            "comrobotsandpencilsxcodesapp",
            "comoneminutegamesxcodecleaner",
            "iohyperappxcodecleaner",
            "xcodesjson",
        ],
        include_force=["~/Library/Containers/com.apple.iphonesimulator.ShareExtension"],
    ),
    Condition(
        key="comrobotsandpencilsxcodesapp",
        exclude=["comappledtxcode", "comoneminutegamesxcodecleaner", "iohyperappxcodecleaner"],
    ),
    Condition(
        key="iohyperappxcodecleaner",
        exclude=[
            "comrobotsandpencilsxcodesapp",
            "comoneminutegamesxcodecleaner",
            "comappledtxcode",
            "xcodesjson",
        ],
    ),
    Condition(key="uszoomxos", include=["zoom"]),
    Condition(key="combravebrowser", include=["brave"]),
    Condition(key="comoktamobile", include=["okta"]),
    Condition(
        key="comgooglechrome",
        include=["google", "chrome"],
        exclude=["iterm", "chromefeaturestate"],
    ),
    Condition(
        key="commicrosoftedgemac",
        include=["microsoft"],
        exclude=["vscode", "rdc", "appcenter", "office", "oneauth"],
    ),
    Condition(key="orgmozillafirefox", include=["mozilla"]),
    Condition(key="comlogioptionsplus", include=["logi"], exclude=["login", "logic"]),
    Condition(
        key="commicrosoftvscode",
        include=["vscode"],
        include_force=["~/Library/Application Support/Code"],
    ),
    Condition(key="comfacebookarchondeveloperid", include=["archonloginhelper"]),
    Condition(key="euexelbanstats", exclude=["video"]),
    Condition(key="jetbrains", include=["jetbrains", "jcef"]),
]

# Most com.apple entries are system owned; a few Apple apps are uninstallable
SKIP_RULES: list[SkipRule] = [
    SkipRule(
        prefix="comapple",
        allow_prefixes=[
            "comappleconfigurator",
            "comappledt",
            "comappleiwork",
            "comapplesfsymbols",
            "comappletestflight",
        ],
    ),
]

# Orphan scan: any normalized name containing one of these is never reported
ORPHAN_SKIP_KEYWORDS: list[str] = [
    "apple", "temporary", "btserver", "proapps", "scripteditor", "ilife", "livefsd",
    "siritoday", "addressbook", "animoji", "appstore", "askpermission", "callhistory",
    "clouddocs", "diskimages", "dock", "facetime", "fileprovider", "instruments",
    "knowledge", "mobilesync", "syncservices", "homeenergyd", "icloud", "icdd",
    "networkserviceproxy", "familycircle", "geoservices", "installation", "passkit",
    "sharedimagecache", "desktop", "mbuseragent", "swiftpm", "baseband", "coresimulator",
    "photoslegacyupgrade", "photosupgrade", "siritts", "ipod", "globalpreferences",
    "apmanalytics", "apmexperiment", "avatarcache", "byhost", "contextstoreagent",
    "mobilemeaccounts", "intentbuilderc", "loginwindow", "momc", "replayd",
    "sharedfilelistd", "clang", "audiocomponent", "csexattrcryptoservice",
    "livetranscriptionagent", "sandboxhelper", "statuskitagent", "betaenrollmentd",
    "contentlinkingd", "diagnosticextensionsd", "gamed", "heard", "homed", "itunescloudd",
    "lldb", "mds", "mediaanalysisd", "metrickitd", "mobiletimerd", "proactived",
    "ptpcamerad", "studentd", "talagent", "watchlistd", "apptranslocation", "xcrun",
    "dsstore", "caches", "crashreporter", "trash", "appsweep", "amsdatamigratortool",
    "arfilecache", "assistant", "chromium", "cloudkit", "webkit", "databases",
    "diagnostic", "cache", "gamekit", "homebrew", "logi", "microsoft", "mozilla", "sync",
    "google", "sentinel", "hexnode", "sentry", "tvappservices",
]


# =============================================================================
# Evaluation
# =============================================================================


def evaluate_conditions(entry: str, conditions: Iterable[Condition]) -> Optional[bool]:
    """
    Run keyword conditions against a normalized entry name.

    Returns False on the first exclude hit, True on the first include hit,
    None if no condition decided.
    """
    for condition in conditions:
        if any(keyword in entry for keyword in condition.exclude):
            return False
        if any(keyword in entry for keyword in condition.include):
            return True
    return None


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of a RuleTable for the duration of one resolution pass."""

    conditions: tuple[Condition, ...]
    skip_rules: tuple[SkipRule, ...]
    orphan_skip_keywords: tuple[str, ...]

    def is_skipped(self, entry: str) -> bool:
        """Skip table check on a normalized entry name."""
        return any(rule.blocks(entry) for rule in self.skip_rules)

    def is_orphan_skipped(self, entry: str) -> bool:
        return any(keyword in entry for keyword in self.orphan_skip_keywords)

    def conditions_for(self, app: AppIdentifiers) -> list[Condition]:
        """Conditions that apply to an app during forward resolution."""
        if not app.use_identifier or not app.identifier:
            return []
        return [c for c in self.conditions if c.key and c.key in app.identifier]

    def claims_for(self, app: AppIdentifiers) -> list[Condition]:
        """Conditions that apply to an installed app during orphan detection.

        Matches in both directions so that anything the forward pass would
        claim for the app is also claimed here.
        """
        if not app.use_identifier or not app.identifier:
            return []
        return [
            c
            for c in self.conditions
            if c.key and (c.key in app.identifier or app.identifier in c.key)
        ]

    def accepts(self, entry: str, app: AppIdentifiers, strict_names: bool = False) -> bool:
        """
        Forward ownership decision for a normalized entry name.

        Conditions decide first (exclude beats include); otherwise the default
        identifier/name heuristic applies.
        """
        decision = evaluate_conditions(entry, self.conditions_for(app))
        if decision is not None:
            return decision
        return app.matches(entry, strict_names=strict_names)


def forced_paths(conditions: Iterable[Condition]) -> tuple[list[str], list[str]]:
    """Collect (include_force, exclude_force) paths from a set of conditions."""
    includes: list[str] = []
    excludes: list[str] = []
    for condition in conditions:
        includes.extend(condition.include_force)
        excludes.extend(condition.exclude_force)
    return includes, excludes


# =============================================================================
# RuleTable
# =============================================================================


class ReadWriteLock:
    """Many concurrent readers or one writer. Queued writers go before new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RuleTable:
    """
    Conditions and skip rules used by both resolvers.

    Resolvers hold the table under its read lock for a whole pass via
    ``reading()``; the administrative mutators take the write lock, so a
    change never lands in the middle of a scan.
    """

    def __init__(
        self,
        conditions: Iterable[Condition] = (),
        skip_rules: Iterable[SkipRule] = (),
        orphan_skip_keywords: Iterable[str] = (),
    ) -> None:
        self._conditions: list[Condition] = list(conditions)
        self._skip_rules: list[SkipRule] = list(skip_rules)
        self._orphan_skip_keywords: list[str] = [k for k in orphan_skip_keywords if k]
        self._lock = ReadWriteLock()

    @classmethod
    def default(cls) -> "RuleTable":
        """Table with the built-in rules only."""
        return cls(CONDITIONS, SKIP_RULES, ORPHAN_SKIP_KEYWORDS)

    @contextmanager
    def reading(self) -> Iterator[RuleSnapshot]:
        """Hold the read lock and yield an immutable snapshot."""
        with self._lock.read():
            yield RuleSnapshot(
                conditions=tuple(self._conditions),
                skip_rules=tuple(self._skip_rules),
                orphan_skip_keywords=tuple(self._orphan_skip_keywords),
            )

    @property
    def conditions(self) -> tuple[Condition, ...]:
        with self._lock.read():
            return tuple(self._conditions)

    @property
    def skip_rules(self) -> tuple[SkipRule, ...]:
        with self._lock.read():
            return tuple(self._skip_rules)

    def get_condition(self, key: str) -> Condition | None:
        key = normalize(key)
        with self._lock.read():
            for condition in self._conditions:
                if condition.key == key:
                    return condition
        return None

    def add_condition(self, condition: Condition) -> None:
        """Add a condition, replacing any existing condition with the same key."""
        with self._lock.write():
            self._conditions = [c for c in self._conditions if c.key != condition.key]
            self._conditions.append(condition)

    def remove_condition(self, key: str) -> bool:
        """Remove the condition with ``key``. Returns True if one was removed."""
        key = normalize(key)
        with self._lock.write():
            before = len(self._conditions)
            self._conditions = [c for c in self._conditions if c.key != key]
            return len(self._conditions) != before

    def add_skip_rule(self, rule: SkipRule) -> None:
        with self._lock.write():
            self._skip_rules = [r for r in self._skip_rules if r.prefix != rule.prefix]
            self._skip_rules.append(rule)

    def remove_skip_rule(self, prefix: str) -> bool:
        prefix = normalize(prefix)
        with self._lock.write():
            before = len(self._skip_rules)
            self._skip_rules = [r for r in self._skip_rules if r.prefix != prefix]
            return len(self._skip_rules) != before
