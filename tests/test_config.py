"""Tests for settings, overlays and remote conditions."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from appsweep import config
from appsweep.config import (
    RemoteConditionsError,
    Settings,
    add_exclusion,
    add_user_condition,
    build_rule_table,
    fetch_remote_conditions,
    load_settings,
    parse_conditions,
    remove_exclusion,
    remove_user_condition,
    save_settings,
    sync_remote_conditions,
)
from appsweep.models import Condition, SkipRule
from appsweep.rules import CONDITIONS


@pytest.fixture(autouse=True)
def config_file(tmp_path):
    """Point the config module at a temporary file."""
    config_dir = tmp_path / ".appsweep"
    with patch.object(config, "CONFIG_DIR", config_dir), patch.object(
        config, "CONFIG_FILE", config_dir / "config.json"
    ):
        yield config_dir / "config.json"


class TestLoadSave:
    def test_defaults_when_missing(self):
        settings = load_settings()
        assert settings == Settings()
        assert settings.max_workers == 8
        assert "/Applications" in settings.app_folders

    def test_roundtrip(self):
        settings = Settings(
            orphan_exclusions=["/tmp/keep"],
            conditions=[Condition(key="com.example.widget", include=["gadget"])],
            strict_name_match=True,
        )
        assert save_settings(settings)
        loaded = load_settings()
        assert loaded.orphan_exclusions == ["/tmp/keep"]
        assert loaded.conditions[0].key == "comexamplewidget"
        assert loaded.strict_name_match

    def test_corrupt_file_falls_back(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text("{not json")
        assert load_settings() == Settings()

    def test_invalid_values_fall_back(self, config_file):
        config_file.parent.mkdir(parents=True)
        config_file.write_text(json.dumps({"max_workers": 0}))
        assert load_settings() == Settings()


class TestRuleTableOverlay:
    def test_builtins_only(self):
        table = build_rule_table()
        assert len(table.conditions) == len(CONDITIONS)

    def test_overlay_replaces_same_key(self):
        settings = Settings(
            conditions=[
                Condition(key="us.zoom.xos", include=["zoomus"]),
                Condition(key="com.example.widget", include=["gadget"]),
            ],
            skip_rules=[SkipRule(prefix="com.example.internal")],
        )
        table = build_rule_table(settings)
        assert len(table.conditions) == len(CONDITIONS) + 1
        assert table.get_condition("uszoomxos").include == ["zoomus"]
        assert any(r.prefix == "comexampleinternal" for r in table.skip_rules)


class TestExclusions:
    def test_add_and_remove(self, tmp_path):
        result = add_exclusion(str(tmp_path / "keep" / ".." / "keep"))
        assert result["success"]
        assert result["orphan_exclusions"] == [str(tmp_path / "keep")]

        # Adding again does not duplicate
        assert add_exclusion(str(tmp_path / "keep"))["orphan_exclusions"] == [str(tmp_path / "keep")]

        assert remove_exclusion(str(tmp_path / "keep"))["success"]
        assert load_settings().orphan_exclusions == []

    def test_add_empty(self):
        assert not add_exclusion("  ")["success"]

    def test_remove_unknown(self):
        assert not remove_exclusion("/nowhere")["success"]


class TestUserConditions:
    def test_add_and_remove(self):
        assert add_user_condition(Condition(key="com.example.widget", include=["gadget"]))["success"]
        assert add_user_condition(Condition(key="com.example.widget", include=["other"]))["count"] == 1
        assert load_settings().conditions[0].include == ["other"]

        assert remove_user_condition("com.example.widget")["success"]
        assert load_settings().conditions == []

    def test_empty_key_rejected(self):
        assert not add_user_condition(Condition(key="..."))["success"]

    def test_remove_missing(self):
        assert not remove_user_condition("com.example.none")["success"]


class TestRemoteConditions:
    def test_parse_conditions(self):
        conditions = parse_conditions([{"bundle_id": "com.example.widget", "include": ["gadget"], "exclude": []}])
        assert conditions[0].key == "comexamplewidget"

    def test_parse_rejects_non_list(self):
        with pytest.raises(RemoteConditionsError):
            parse_conditions({"bundle_id": "x"})

    def test_parse_rejects_invalid_item(self):
        with pytest.raises(RemoteConditionsError):
            parse_conditions([{"include": ["x"]}])

    def test_fetch(self):
        response = MagicMock()
        response.json.return_value = [{"bundle_id": "com.example.widget", "include": ["gadget"], "exclude": []}]
        with patch("appsweep.config.httpx.get", return_value=response) as get:
            conditions = fetch_remote_conditions("https://example.test/conditions.json")
        assert get.call_args[0][0] == "https://example.test/conditions.json"
        assert conditions[0].include == ["gadget"]

    def test_fetch_network_error(self):
        with patch("appsweep.config.httpx.get", side_effect=httpx.ConnectError("offline")):
            with pytest.raises(RemoteConditionsError):
                fetch_remote_conditions("https://example.test/conditions.json")

    def test_fetch_bad_json(self):
        response = MagicMock()
        response.json.side_effect = json.JSONDecodeError("bad", "doc", 0)
        with patch("appsweep.config.httpx.get", return_value=response):
            with pytest.raises(RemoteConditionsError):
                fetch_remote_conditions("https://example.test/conditions.json")

    def test_sync_merges_and_saves_url(self):
        remote = [Condition(key="com.example.widget", include=["gadget"])]
        with patch("appsweep.config.fetch_remote_conditions", return_value=remote):
            result = sync_remote_conditions("https://example.test/c.json")
        assert result == {"success": True, "fetched": 1, "count": 1}
        settings = load_settings()
        assert settings.conditions_url == "https://example.test/c.json"
        assert settings.conditions[0].key == "comexamplewidget"

    def test_sync_without_url(self):
        assert not sync_remote_conditions()["success"]

    def test_sync_reports_errors(self):
        with patch(
            "appsweep.config.fetch_remote_conditions",
            side_effect=RemoteConditionsError("boom"),
        ):
            result = sync_remote_conditions("https://example.test/c.json")
        assert result == {"success": False, "error": "boom"}
