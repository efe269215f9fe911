"""Data models for appsweep."""

import os
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from appsweep.identifiers import normalize


def format_size(size_bytes: int) -> str:
    """Format bytes to human-readable string (decimal units like macOS)."""
    if size_bytes >= 1000**3:
        return f"{size_bytes / (1000**3):.1f} GB"
    elif size_bytes >= 1000**2:
        return f"{size_bytes / (1000**2):.1f} MB"
    elif size_bytes >= 1000:
        return f"{size_bytes / 1000:.1f} KB"
    else:
        return f"{size_bytes} B"


class AppDescriptor(BaseModel):
    """Identity of one installed application."""

    model_config = ConfigDict(frozen=True)

    bundle_identifier: str = Field("", description="CFBundleIdentifier, may be empty")
    display_name: str = Field(..., description="Human-readable app name")
    bundle_path: str = Field(..., description="Absolute path to the .app bundle")
    is_web_app: bool = Field(False, description="Web-wrapped app (LSTemplateApplication)")
    entitlement_strings: list[str] = Field(
        default_factory=list,
        description="Identifier-like strings from the code signature entitlements",
    )
    app_groups: list[str] = Field(
        default_factory=list,
        description="App Group identifiers (com.apple.security.application-groups)",
    )
    version: str = Field("", description="CFBundleShortVersionString or CFBundleVersion")
    is_wrapped: bool = Field(False, description="Bundle lives inside a Wrapper directory")


def _as_list(value) -> list:
    if value is None:
        return []
    # A lone string is one keyword, not a sequence of characters
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"expected a list of strings, got {type(value).__name__}")
    return list(value)


class Condition(BaseModel):
    """Per-bundle ownership rule.

    ``key`` is matched against the normalized bundle identifier. ``exclude``
    keywords always win over ``include`` keywords, and ``exclude_force`` paths
    always win over ``include_force`` paths and scan results.
    """

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(
        ...,
        validation_alias=AliasChoices("key", "bundle_id"),
        description="Normalized bundle identifier fragment",
    )
    include: list[str] = Field(default_factory=list, description="Keywords confirming ownership")
    exclude: list[str] = Field(default_factory=list, description="Keywords vetoing ownership")
    include_force: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("include_force", "includeForce"),
        description="Absolute paths always owned",
    )
    exclude_force: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("exclude_force", "excludeForce"),
        description="Absolute paths never owned",
    )

    @field_validator("key", mode="before")
    @classmethod
    def _normalize_key(cls, value: str) -> str:
        return normalize(str(value))

    @field_validator("include", "exclude", mode="before")
    @classmethod
    def _normalize_keywords(cls, value: Optional[list[str]]) -> list[str]:
        keywords = [normalize(str(v)) for v in _as_list(value)]
        return [k for k in keywords if k]

    @field_validator("include_force", "exclude_force", mode="before")
    @classmethod
    def _expand_forced(cls, value: Optional[list[str]]) -> list[str]:
        return [os.path.normpath(os.path.expanduser(str(v))) for v in _as_list(value)]


class SkipRule(BaseModel):
    """Reject normalized names starting with ``prefix`` unless an allow prefix matches."""

    prefix: str = Field(..., description="Blocked normalized prefix")
    allow_prefixes: list[str] = Field(
        default_factory=list, description="Longer prefixes that override the skip"
    )

    @field_validator("prefix", mode="before")
    @classmethod
    def _normalize_prefix(cls, value: str) -> str:
        return normalize(str(value))

    @field_validator("allow_prefixes", mode="before")
    @classmethod
    def _normalize_allow(cls, value: Optional[list[str]]) -> list[str]:
        if value is None:
            return []
        return [normalize(str(v)) for v in value if normalize(str(v))]

    def blocks(self, name: str) -> bool:
        """True if the normalized ``name`` is rejected by this rule."""
        if not self.prefix or not name.startswith(self.prefix):
            return False
        return not any(name.startswith(allowed) for allowed in self.allow_prefixes)


class Candidate(BaseModel):
    """A filesystem path discovered during a scan."""

    path: str = Field(..., description="Absolute path")
    is_dir: bool = Field(False, description="Whether the path is a directory")
    real_size: Optional[int] = Field(None, description="Allocated bytes on disk")
    logical_size: Optional[int] = Field(None, description="Apparent bytes")
    icon: Optional[str] = Field(None, description="Icon handle (path to an .icns file)")

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def size_human(self) -> str:
        """Human-readable real size, or '-' when sizes were not resolved."""
        if self.real_size is None:
            return "-"
        return format_size(self.real_size)


class ResolutionResult(BaseModel):
    """Final output of a forward or reverse resolution pass."""

    candidates: list[Candidate] = Field(default_factory=list)
    app: Optional[AppDescriptor] = Field(None, description="App resolved for, None for orphans")
    cancelled: bool = Field(False, description="Scan was stopped before completion")

    @property
    def paths(self) -> list[str]:
        """Ordered result paths."""
        return [c.path for c in self.candidates]

    @property
    def count(self) -> int:
        return len(self.candidates)

    @property
    def total_real_bytes(self) -> int:
        return sum(c.real_size or 0 for c in self.candidates)

    @property
    def total_logical_bytes(self) -> int:
        return sum(c.logical_size or 0 for c in self.candidates)

    @property
    def total_size_human(self) -> str:
        return format_size(self.total_real_bytes)

    @property
    def is_empty(self) -> bool:
        return not self.candidates
