"""Tests for forward resolution (files belonging to one app)."""

import os
import plistlib
import threading

import pytest

from appsweep.containers import CONTAINER_METADATA_FILE, METADATA_IDENTIFIER_KEY, ContainerLocator
from appsweep.forward import AppPathFinder, ResolutionState, find_app_paths, seed_bundle_path
from appsweep.models import AppDescriptor, Condition
from appsweep.rules import RuleTable

UUID = "0A1B2C3D-4E5F-6A7B-8C9D-0E1F2A3B4C5D"


@pytest.fixture
def home(tmp_path):
    """A fake home with Library roots and empty container roots."""
    for sub in ["Library/Caches", "Library/Preferences", "Library/Containers", "Library/Group Containers"]:
        (tmp_path / sub).mkdir(parents=True)
    (tmp_path / "Applications").mkdir()
    return tmp_path


def roots(home):
    return [home / "Library" / "Caches", home / "Library" / "Preferences"]


def locator(home):
    return ContainerLocator(home / "Library" / "Containers", home / "Library" / "Group Containers")


def widget(home, **kwargs):
    bundle = home / "Applications" / "Widget.app"
    bundle.mkdir(exist_ok=True)
    defaults = {
        "bundle_identifier": "com.example.widget",
        "display_name": "Widget",
        "bundle_path": str(bundle),
    }
    defaults.update(kwargs)
    return AppDescriptor(**defaults)


def resolve(home, app, rules=None, **kwargs):
    finder = AppPathFinder(
        app,
        rules or RuleTable.default(),
        roots(home),
        locator=locator(home),
        size_lookup=None,
        **kwargs,
    )
    return finder, finder.find_paths()


class TestSeed:
    def test_plain_bundle(self):
        assert str(seed_bundle_path("/Applications/Widget.app")) == "/Applications/Widget.app"

    def test_wrapped_bundle_uses_outer(self):
        seed = seed_bundle_path("/Applications/Widget.app/Wrapper/Widget.app")
        assert str(seed) == "/Applications/Widget.app"

    def test_trashed_bundle_not_seeded(self):
        assert seed_bundle_path("/Users/me/.Trash/Widget.app") is None

    def test_empty(self):
        assert seed_bundle_path("") is None


class TestForwardResolution:
    def test_identifier_and_name_matches(self, home):
        caches = home / "Library" / "Caches"
        prefs = home / "Library" / "Preferences"
        (prefs / "com.example.widget.plist").write_text("x")
        (caches / "widgetcache").mkdir()
        (caches / "com.apple.something").mkdir()
        (caches / "unrelated").mkdir()

        app = widget(home)
        finder, result = resolve(home, app)

        assert set(result.paths) == {
            app.bundle_path,
            str(prefs / "com.example.widget.plist"),
            str(caches / "widgetcache"),
        }
        assert finder.state == ResolutionState.DONE
        assert result.app == app
        assert not result.cancelled

    def test_condition_exclude_takes_precedence(self, home):
        caches = home / "Library" / "Caches"
        (caches / "widgetcleanerhelper").mkdir()
        (caches / "widgetdata").mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include=["widget"], exclude=["cleaner"])])
        _, result = resolve(home, widget(home), rules)

        assert str(caches / "widgetcleanerhelper") not in result.paths
        assert str(caches / "widgetdata") in result.paths

    def test_condition_include_claims_unrelated_name(self, home):
        caches = home / "Library" / "Caches"
        (caches / "GadgetHelper").mkdir()

        rules = RuleTable([Condition(key="comexamplewidget", include=["gadget"])])
        _, result = resolve(home, widget(home), rules)
        assert str(caches / "GadgetHelper") in result.paths

    def test_allowed_apple_prefix_is_scanned(self, home):
        caches = home / "Library" / "Caches"
        (caches / "com.apple.dt.Xcode").mkdir()
        (caches / "com.apple.Safari").mkdir()

        app = widget(home, bundle_identifier="com.apple.dt.Xcode", display_name="Xcode")
        _, result = resolve(home, app)
        assert str(caches / "com.apple.dt.Xcode") in result.paths
        assert str(caches / "com.apple.Safari") not in result.paths

    def test_strict_names(self, home):
        caches = home / "Library" / "Caches"
        (caches / "widget").mkdir()
        (caches / "widgetsync").mkdir()

        app = widget(home, bundle_identifier="")
        _, result = resolve(home, app, strict_names=True)
        assert str(caches / "widget") in result.paths
        assert str(caches / "widgetsync") not in result.paths

    def test_fifo_entries_ignored(self, home):
        caches = home / "Library" / "Caches"
        os.mkfifo(caches / "widget.pipe")
        _, result = resolve(home, widget(home))
        assert str(caches / "widget.pipe") not in result.paths

    def test_missing_root_skipped(self, home):
        app = widget(home)
        finder = AppPathFinder(
            app,
            RuleTable.default(),
            [home / "nope"] + roots(home),
            locator=locator(home),
            size_lookup=None,
        )
        assert finder.find_paths().paths == [app.bundle_path]


class TestContainersAndForcedPaths:
    def test_sandbox_and_group_containers(self, home):
        container = home / "Library" / "Containers" / UUID
        container.mkdir()
        with open(container / CONTAINER_METADATA_FILE, "wb") as f:
            plistlib.dump({METADATA_IDENTIFIER_KEY: "com.example.widget"}, f)
        group = home / "Library" / "Group Containers" / "TEAM.group.widget"
        group.mkdir()

        _, result = resolve(home, widget(home, app_groups=["TEAM.group.widget"]))
        assert str(container) in result.paths
        assert str(group) in result.paths

    def test_include_and_exclude_force(self, home):
        forced = home / "Somewhere" / "Forced"
        forced.mkdir(parents=True)
        caches = home / "Library" / "Caches"
        (caches / "widgetlogs").mkdir()

        rules = RuleTable(
            [
                Condition(
                    key="comexamplewidget",
                    include_force=[str(forced), str(home / "missing")],
                    exclude_force=[str(caches / "widgetlogs")],
                )
            ]
        )
        _, result = resolve(home, widget(home), rules)
        assert str(forced) in result.paths
        assert str(home / "missing") not in result.paths
        assert str(caches / "widgetlogs") not in result.paths

    def test_result_is_collapsed(self, home):
        caches = home / "Library" / "Caches"
        outer = caches / "widget"
        outer.mkdir()
        rules = RuleTable([Condition(key="comexamplewidget", include_force=[str(outer / "inner")])])
        (outer / "inner").mkdir()

        _, result = resolve(home, widget(home), rules)
        assert str(outer) in result.paths
        assert str(outer / "inner") not in result.paths


class TestWebAndTrash:
    def test_web_app_skips_root_scan(self, home):
        caches = home / "Library" / "Caches"
        (caches / "widgetcache").mkdir()
        (caches / "com.example.widget").mkdir()

        app = widget(home, is_web_app=True)
        _, result = resolve(home, app)
        assert result.paths == [app.bundle_path]

    def test_web_app_keeps_containers(self, home):
        group = home / "Library" / "Group Containers" / "com.example.widget"
        group.mkdir()
        _, result = resolve(home, widget(home, is_web_app=True))
        assert str(group) in result.paths

    def test_only_trashed_item_gives_empty_result(self, home):
        trash = home / ".Trash"
        trash.mkdir()
        rules = RuleTable([Condition(key="comexamplewidget", include_force=[str(trash / "widget.log")])])
        (trash / "widget.log").write_text("x")

        app = AppDescriptor(
            bundle_identifier="com.example.widget",
            display_name="Widget",
            bundle_path=str(trash / "Widget.app"),
        )
        _, result = resolve(home, app, rules)
        assert result.is_empty


class TestCancellation:
    def test_preset_stop_event(self, home):
        caches = home / "Library" / "Caches"
        (caches / "widgetcache").mkdir()
        stop = threading.Event()
        stop.set()

        app = widget(home)
        _, result = resolve(home, app, stop_event=stop)
        assert result.cancelled
        assert str(caches / "widgetcache") not in result.paths
        assert app.bundle_path in result.paths


class TestSizes:
    def test_sizes_attached_by_default(self, home):
        (home / "Library" / "Caches" / "widgetcache").write_bytes(b"x" * 10)
        result = find_app_paths(widget(home), RuleTable.default(), roots(home), locator=locator(home))
        by_path = {c.path: c for c in result.candidates}
        assert by_path[str(home / "Library" / "Caches" / "widgetcache")].logical_size == 10

    def test_progress_callback(self, home):
        calls = []
        finder = AppPathFinder(
            widget(home), RuleTable.default(), roots(home), locator=locator(home), size_lookup=None
        )
        finder.find_paths(progress_callback=lambda root, current, total: calls.append((current, total)))
        assert sorted(calls) == [(1, 2), (2, 2)]
