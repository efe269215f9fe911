"""Identifier normalization and per-app match tokens.

Every comparison in appsweep happens on normalized tokens: ASCII letters and
digits only, lowercased. "My-App", "my app" and "MyApp" all become "myapp".
"""

import re
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from appsweep.models import AppDescriptor

# Tokens shorter than this never take part in loose "contains" matching
MIN_LOOSE_MATCH_LENGTH = 4

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")

UUID_PATTERN = re.compile(
    r"^[0-9A-F]{8}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{4}-[0-9A-F]{12}$",
    re.IGNORECASE,
)


def normalize(value: str) -> str:
    """Strip every non-ASCII-alphanumeric character and lowercase the rest."""
    if not value:
        return ""
    return _NON_ALNUM.sub("", value).lower()


def is_uuid_name(name: str) -> bool:
    """True if ``name`` looks like a container UUID (8-4-4-4-12 hex)."""
    return bool(UUID_PATTERN.match(name))


def is_valid_bundle_identifier(identifier: str) -> bool:
    """
    Check whether a bundle identifier is specific enough to match on.

    Dotted identifiers are always usable. Single-component identifiers
    (some bundles ship e.g. "Setup") need at least 5 characters.
    """
    if not identifier:
        return False
    components = identifier.split(".")
    if len(components) == 1:
        return len(identifier) >= 5
    return True


def short_form(identifier: str) -> str:
    """Last two dot components of an identifier, joined and normalized."""
    components = [normalize(c) for c in identifier.split(".") if c != "-"]
    components = [c for c in components if c]
    return "".join(components[-2:])


def _long_enough(token: str) -> bool:
    return len(token) >= MIN_LOOSE_MATCH_LENGTH


@dataclass(frozen=True)
class AppIdentifiers:
    """Match tokens for one app, computed once per resolution pass."""

    identifier: str
    short_form: str
    name: str
    name_letters: str
    path_name: str
    use_identifier: bool
    is_web_app: bool = False

    @classmethod
    def from_descriptor(cls, app: "AppDescriptor") -> "AppIdentifiers":
        name = normalize(app.display_name)
        bundle_name = PurePath(app.bundle_path).name if app.bundle_path else ""
        if bundle_name.endswith(".app"):
            bundle_name = bundle_name[: -len(".app")]
        return cls(
            identifier=normalize(app.bundle_identifier),
            short_form=short_form(app.bundle_identifier),
            name=name,
            name_letters="".join(ch for ch in name if ch.isalpha()),
            path_name=normalize(bundle_name),
            use_identifier=is_valid_bundle_identifier(app.bundle_identifier),
            is_web_app=app.is_web_app,
        )

    @property
    def identifier_tokens(self) -> list[str]:
        """Identifier-derived tokens usable for loose matching."""
        if not self.use_identifier:
            return []
        return [t for t in (self.identifier, self.short_form) if _long_enough(t)]

    @property
    def name_tokens(self) -> list[str]:
        """Name-derived tokens usable for loose matching."""
        return [t for t in (self.name, self.name_letters, self.path_name) if _long_enough(t)]

    def matches(self, entry: str, strict_names: bool = False) -> bool:
        """
        Default ownership heuristic for a normalized entry name.

        Web apps only claim entries carrying their full identifier. Other apps
        claim entries containing the identifier, its short form, or one of the
        name tokens (equality instead of containment when ``strict_names``).
        """
        if not entry:
            return False

        if self.is_web_app:
            return bool(self.use_identifier and self.identifier) and self.identifier in entry

        if any(token in entry for token in self.identifier_tokens):
            return True

        if strict_names:
            return any(entry == token for token in self.name_tokens)
        return any(token in entry for token in self.name_tokens)
