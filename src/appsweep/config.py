"""User settings for appsweep, stored as JSON in ~/.appsweep/config.json."""

import json
import logging
import os
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from appsweep.locations import APP_FOLDERS, expand_path, get_residue_roots, get_search_roots
from appsweep.models import Condition, SkipRule
from appsweep.rules import CONDITIONS, ORPHAN_SKIP_KEYWORDS, SKIP_RULES, RuleTable

logger = logging.getLogger(__name__)

CONFIG_DIR = expand_path("~/.appsweep")
CONFIG_FILE = CONFIG_DIR / "config.json"


class RemoteConditionsError(Exception):
    """Remote conditions could not be fetched or were not a list of conditions."""


class Settings(BaseModel):
    """Everything a user can change; all fields have working defaults."""

    extra_search_roots: list[str] = Field(default_factory=list)
    extra_residue_roots: list[str] = Field(default_factory=list)
    app_folders: list[str] = Field(default_factory=lambda: list(APP_FOLDERS))
    orphan_exclusions: list[str] = Field(default_factory=list)
    conditions: list[Condition] = Field(
        default_factory=list, description="Overlay; replaces built-ins with the same key"
    )
    skip_rules: list[SkipRule] = Field(
        default_factory=list, description="Overlay; replaces built-ins with the same prefix"
    )
    conditions_url: str = Field("", description="JSON list of conditions for `conditions sync`")
    strict_name_match: bool = False
    max_workers: int = Field(8, ge=1)
    batch_size: int = Field(50, ge=1)


def _load_config() -> dict:
    """Load configuration from disk."""
    if not CONFIG_FILE.exists():
        return {}

    try:
        with open(CONFIG_FILE) as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, e)
        return {}
    return data if isinstance(data, dict) else {}


def _save_config(config: dict) -> bool:
    """Save configuration to disk."""
    try:
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            json.dump(config, f, indent=2)
        return True
    except OSError:
        return False


def load_settings() -> Settings:
    """Settings from disk, or defaults when the file is missing or invalid."""
    try:
        return Settings.model_validate(_load_config())
    except ValidationError as e:
        logger.warning("Ignoring invalid config %s: %s", CONFIG_FILE, e)
        return Settings()


def save_settings(settings: Settings) -> bool:
    return _save_config(settings.model_dump(mode="json"))


def build_rule_table(settings: Settings | None = None) -> RuleTable:
    """
    Built-in rules merged with the user's overlay.

    Overlay entries replace built-ins that share their key (or prefix).
    """
    table = RuleTable(CONDITIONS, SKIP_RULES, ORPHAN_SKIP_KEYWORDS)
    if settings is None:
        return table
    for condition in settings.conditions:
        table.add_condition(condition)
    for rule in settings.skip_rules:
        table.add_skip_rule(rule)
    return table


# =============================================================================
# Orphan exclusions
# =============================================================================


def _normalize_exclusion(path: str) -> str:
    return os.path.normpath(str(expand_path(path.strip())))


def add_exclusion(path: str) -> dict:
    """
    Never report ``path`` (or anything containing it) as an orphan.

    Args:
        path: Path to exclude (can contain ~)

    Returns:
        Dict with success status and current exclusions
    """
    if not path or not path.strip():
        return {"success": False, "error": "Must specify a path"}

    settings = load_settings()
    expanded = _normalize_exclusion(path)
    if expanded not in settings.orphan_exclusions:
        settings.orphan_exclusions.append(expanded)

    if save_settings(settings):
        return {"success": True, "orphan_exclusions": settings.orphan_exclusions}
    return {"success": False, "error": "Failed to save config"}


def remove_exclusion(path: str) -> dict:
    """Remove a path from the orphan exclusion list."""
    settings = load_settings()
    expanded = _normalize_exclusion(path)
    if expanded not in settings.orphan_exclusions:
        return {"success": False, "error": f"Not excluded: {path}"}

    settings.orphan_exclusions.remove(expanded)
    if save_settings(settings):
        return {"success": True, "orphan_exclusions": settings.orphan_exclusions}
    return {"success": False, "error": "Failed to save config"}


# =============================================================================
# User conditions
# =============================================================================


def add_user_condition(condition: Condition) -> dict:
    """Add or replace a condition in the user's overlay."""
    if not condition.key:
        return {"success": False, "error": "Condition key is empty after normalization"}

    settings = load_settings()
    settings.conditions = [c for c in settings.conditions if c.key != condition.key]
    settings.conditions.append(condition)

    if save_settings(settings):
        return {"success": True, "key": condition.key, "count": len(settings.conditions)}
    return {"success": False, "error": "Failed to save config"}


def remove_user_condition(key: str) -> dict:
    """Remove a condition from the user's overlay (built-ins stay)."""
    settings = load_settings()
    remaining = [c for c in settings.conditions if c.key != Condition(key=key).key]
    if len(remaining) == len(settings.conditions):
        return {"success": False, "error": f"No user condition for: {key}"}

    settings.conditions = remaining
    if save_settings(settings):
        return {"success": True, "count": len(remaining)}
    return {"success": False, "error": "Failed to save config"}


def parse_conditions(payload: Any) -> list[Condition]:
    """Validate a decoded JSON payload as a list of conditions."""
    if not isinstance(payload, list):
        raise RemoteConditionsError("Expected a JSON list of conditions")
    try:
        return [Condition.model_validate(item) for item in payload]
    except ValidationError as e:
        raise RemoteConditionsError(f"Invalid condition: {e}") from e


def fetch_remote_conditions(url: str, timeout: float = 10.0) -> list[Condition]:
    """
    Download additional conditions.

    Args:
        url: Location of a JSON list of conditions
        timeout: Request timeout in seconds

    Returns:
        Parsed conditions

    Raises:
        RemoteConditionsError: On network errors, bad status or invalid payload
    """
    try:
        response = httpx.get(
            url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            follow_redirects=True,
        )
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as e:
        raise RemoteConditionsError(f"Failed to fetch conditions: {e}") from e
    except ValueError as e:
        raise RemoteConditionsError(f"Failed to decode conditions JSON: {e}") from e

    conditions = parse_conditions(payload)
    logger.debug("Fetched %d conditions from %s", len(conditions), url)
    return conditions


def sync_remote_conditions(url: str | None = None) -> dict:
    """Fetch remote conditions and merge them into the user's overlay."""
    settings = load_settings()
    url = url or settings.conditions_url
    if not url:
        return {"success": False, "error": "No conditions URL configured"}

    try:
        remote = fetch_remote_conditions(url)
    except RemoteConditionsError as e:
        return {"success": False, "error": str(e)}

    by_key = {c.key: c for c in settings.conditions}
    for condition in remote:
        by_key[condition.key] = condition
    settings.conditions = list(by_key.values())
    settings.conditions_url = url

    if save_settings(settings):
        return {"success": True, "fetched": len(remote), "count": len(settings.conditions)}
    return {"success": False, "error": "Failed to save config"}


def search_roots_for(settings: Settings) -> list[Path]:
    return get_search_roots(settings.extra_search_roots)


def residue_roots_for(settings: Settings) -> list[Path]:
    return get_residue_roots(settings.extra_residue_roots)
