"""Tests for reverse resolution (orphaned files)."""

import os
import plistlib
import threading

import pytest

from appsweep.containers import CONTAINER_METADATA_FILE, METADATA_IDENTIFIER_KEY, ContainerLocator
from appsweep.forward import AppPathFinder
from appsweep.models import AppDescriptor, Condition
from appsweep.reverse import OrphanFinder, OrphanState, find_orphaned_paths
from appsweep.rules import RuleTable

UUID = "0A1B2C3D-4E5F-6A7B-8C9D-0E1F2A3B4C5D"


@pytest.fixture
def home(tmp_path):
    for sub in ["Library/Application Support", "Library/Caches", "Library/Containers", "Library/Group Containers"]:
        (tmp_path / sub).mkdir(parents=True)
    return tmp_path


def residue(home):
    return [home / "Library" / "Application Support", home / "Library" / "Caches"]


def locator(home):
    return ContainerLocator(home / "Library" / "Containers", home / "Library" / "Group Containers")


def installed_widget(**kwargs):
    defaults = {
        "bundle_identifier": "com.example.widget",
        "display_name": "Widget",
        "bundle_path": "/Applications/Widget.app",
    }
    defaults.update(kwargs)
    return AppDescriptor(**defaults)


def orphans(home, installed=None, rules=None, residue_roots=None, **kwargs):
    finder = OrphanFinder(
        installed if installed is not None else [installed_widget()],
        rules or RuleTable.default(),
        residue_roots or residue(home),
        locator=locator(home),
        **kwargs,
    )
    return finder, finder.find_orphans()


class TestOrphanDetection:
    def test_leftover_reported_and_owned_entries_not(self, home):
        support = home / "Library" / "Application Support"
        (support / "leftoverjunk").mkdir()
        (support / "Widget").mkdir()
        (support / "com.example.widget").mkdir()
        (support / UUID).mkdir()

        finder, result = orphans(home)
        assert result.paths == [str(support / "leftoverjunk")]
        assert result.app is None
        assert finder.state == OrphanState.DONE

    def test_skip_keywords(self, home):
        caches = home / "Library" / "Caches"
        (caches / "com.google.Updater").mkdir()
        (caches / "SomeCache").mkdir()
        (caches / "oldtoolbox").mkdir()

        _, result = orphans(home)
        assert result.paths == [str(caches / "oldtoolbox")]

    def test_unsupported_types(self, home):
        caches = home / "Library" / "Caches"
        os.mkfifo(caches / "strayfifo")
        _, result = orphans(home)
        assert result.is_empty

    def test_entitlement_strings_claim_entries(self, home):
        support = home / "Library" / "Application Support"
        (support / "net.vendor.helperd").mkdir()

        app = installed_widget(entitlement_strings=["net.vendor.helperd"])
        _, result = orphans(home, installed=[app])
        assert result.is_empty

    def test_condition_include_claims_entry(self, home):
        support = home / "Library" / "Application Support"
        (support / "GadgetSupport").mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include=["gadget"])])
        _, result = orphans(home, rules=rules)
        assert result.is_empty

    def test_condition_with_exclude_hit_does_not_claim(self, home):
        support = home / "Library" / "Application Support"
        (support / "gadgetcleaner").mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include=["gadget"], exclude=["cleaner"])])
        _, result = orphans(home, rules=rules)
        assert result.paths == [str(support / "gadgetcleaner")]

    def test_include_force_path_claimed(self, home):
        support = home / "Library" / "Application Support"
        forced = support / "Shared Stuff"
        forced.mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include_force=[str(forced)])])
        _, result = orphans(home, rules=rules)
        assert result.is_empty

    def test_container_owned_by_installed_app(self, home):
        containers = home / "Library" / "Containers"
        owned = containers / "Notifier Extension"
        owned.mkdir()
        with open(owned / CONTAINER_METADATA_FILE, "wb") as f:
            plistlib.dump({METADATA_IDENTIFIER_KEY: "com.example.widget"}, f)
        stale = containers / "net.gone.tool"
        stale.mkdir()
        with open(stale / CONTAINER_METADATA_FILE, "wb") as f:
            plistlib.dump({METADATA_IDENTIFIER_KEY: "net.gone.tool"}, f)

        _, result = orphans(home, residue_roots=[containers])
        assert result.paths == [str(stale)]

    def test_no_installed_apps(self, home):
        support = home / "Library" / "Application Support"
        (support / "leftoverjunk").mkdir()
        _, result = orphans(home, installed=[])
        assert result.paths == [str(support / "leftoverjunk")]


class TestExclusions:
    def test_exact_and_substring(self, home):
        support = home / "Library" / "Application Support"
        (support / "leftoverjunk").mkdir()
        (support / "oldtoolbox").mkdir()
        (support / "stalething").mkdir()

        _, result = orphans(
            home,
            exclusions=[str(support / "leftoverjunk"), "toolbox", "  "],
        )
        assert result.paths == [str(support / "stalething")]


class TestComplementarity:
    def test_forward_claims_are_never_orphans(self, home):
        support = home / "Library" / "Application Support"
        caches = home / "Library" / "Caches"
        for name in ["widgetcache", "com.example.widget", "WidgetHelper", "GadgetLogs", "leftoverjunk"]:
            (support / name).mkdir()
        (caches / "ExampleWidget").mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include=["gadget"])])
        app = installed_widget(bundle_path=str(home / "Widget.app"))
        (home / "Widget.app").mkdir()

        forward = AppPathFinder(
            app, rules, residue(home), locator=locator(home), size_lookup=None
        ).find_paths()
        _, reverse = orphans(home, installed=[app], rules=rules)

        assert set(forward.paths).isdisjoint(reverse.paths)
        assert reverse.paths == [str(support / "leftoverjunk")]

    def test_broader_condition_exclude_does_not_unclaim(self, home):
        support = home / "Library" / "Application Support"
        (support / "zzhelperbeta").mkdir()

        rules = RuleTable(
            [
                Condition(key="comacmetoolsuite", exclude=["beta"]),
                Condition(key="acmetool", include=["zzhelper"]),
            ]
        )
        app = AppDescriptor(
            bundle_identifier="com.acme.tool",
            display_name="Xy",
            bundle_path=str(home / "Xy.app"),
        )
        (home / "Xy.app").mkdir()

        forward = AppPathFinder(
            app, rules, residue(home), locator=locator(home), size_lookup=None
        ).find_paths()
        _, reverse = orphans(home, installed=[app], rules=rules)

        assert str(support / "zzhelperbeta") in forward.paths
        assert reverse.is_empty


class TestBatching:
    def test_streaming_batches(self, home):
        support = home / "Library" / "Application Support"
        names = [f"leftover{n:02d}" for n in range(7)]
        for name in names:
            (support / name).mkdir()

        batches = []
        finder = OrphanFinder(
            [installed_widget()],
            RuleTable.default(),
            residue(home),
            locator=locator(home),
            batch_size=3,
        )
        result = finder.find_orphans(on_batch=batches.append)

        assert [len(b) for b in batches] == [3, 3, 1]
        streamed = sorted(p for batch in batches for p in batch)
        assert streamed == sorted(result.paths)

    def test_buffer_all_mode(self, home):
        support = home / "Library" / "Application Support"
        (support / "leftoverjunk").mkdir()
        result = find_orphaned_paths(
            [installed_widget()], RuleTable.default(), residue(home), locator=locator(home)
        )
        assert result.count == 1
        assert result.candidates[0].real_size is None


class TestCancellation:
    def test_cancel_before_start(self, home):
        support = home / "Library" / "Application Support"
        (support / "leftoverjunk").mkdir()

        stop = threading.Event()
        finder = OrphanFinder(
            [installed_widget()],
            RuleTable.default(),
            residue(home),
            locator=locator(home),
            stop_event=stop,
        )
        finder.cancel()
        result = finder.find_orphans()
        assert result.cancelled
        assert result.is_empty

    def test_cancel_from_batch_callback_stops_the_root_scan(self, home):
        support = home / "Library" / "Application Support"
        for n in range(20):
            (support / f"leftover{n:02d}").mkdir()

        batches = []
        finder = OrphanFinder(
            [installed_widget()],
            RuleTable.default(),
            [support],
            locator=locator(home),
            batch_size=1,
        )

        def on_batch(batch):
            batches.append(batch)
            finder.cancel()

        result = finder.find_orphans(on_batch=on_batch)
        assert result.cancelled
        assert len(batches) == 1
        assert result.count == 1
        assert result.paths == batches[0]

    def test_no_batches_after_cancel(self, home):
        support = home / "Library" / "Application Support"
        for n in range(5):
            (support / f"leftover{n}").mkdir()

        batches = []
        finder = OrphanFinder(
            [installed_widget()],
            RuleTable.default(),
            [support],
            locator=locator(home),
            batch_size=3,
        )

        def on_batch(batch):
            batches.append(batch)
            finder.cancel()

        result = finder.find_orphans(on_batch=on_batch)
        assert [len(b) for b in batches] == [3]
        assert result.count == 3
