"""Override rule and manifest models.

The manifest is an unordered mapping keyed by (target_origin, target_name).
It is stored as a tuple of rules sorted by key, so the order in which
fetches complete never changes its content or its hash.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

from patchforge.core.hasher import content_address
from patchforge.models.sources import FetchedTree, PinnedSource

CRATES_IO = "crates-io"


def _clean_subpath(value: str) -> str:
    value = value.strip().strip("/")
    if value and any(part == ".." for part in value.split("/")):
        raise ValueError(f"subpath may not leave the source tree: {value!r}")
    return value


class OverrideSpec(BaseModel):
    """An override as declared, before its source has been fetched."""

    model_config = ConfigDict(frozen=True)

    target_origin: str  # upstream location being replaced, or "crates-io"
    target_name: str
    source: PinnedSource
    subpath: str = ""  # crate directory inside the replacement tree
    version: str | None = None  # expected crate version in the lock

    @field_validator("subpath")
    @classmethod
    def _check_subpath(cls, value: str) -> str:
        return _clean_subpath(value)

    @property
    def key(self) -> tuple[str, str]:
        return (self.target_origin, self.target_name)

    def replacement_identity(self) -> dict[str, str]:
        """What this override substitutes in, for duplicate comparison."""
        return {
            "url": self.source.url,
            "rev": self.source.rev,
            "hash": self.source.expected_hash,
            "subpath": self.subpath,
        }


class OverrideRule(BaseModel):
    """A verified substitution of one dependency by a fetched tree."""

    model_config = ConfigDict(frozen=True)

    target_origin: str
    target_name: str
    replacement: FetchedTree
    subpath: str = ""
    version: str | None = None

    @field_validator("subpath")
    @classmethod
    def _check_subpath(cls, value: str) -> str:
        return _clean_subpath(value)

    @property
    def key(self) -> tuple[str, str]:
        return (self.target_origin, self.target_name)

    @property
    def crate_path(self) -> Path:
        """Directory handed to the toolchain as the dependency's path."""
        path = self.replacement.local_path
        return path / self.subpath if self.subpath else path

    def summary(self) -> dict[str, str]:
        return {
            "origin": self.target_origin,
            "name": self.target_name,
            "url": self.replacement.source.url,
            "rev": self.replacement.source.rev,
            "hash": self.replacement.verified_hash,
            "subpath": self.subpath,
        }


class OverrideManifest(BaseModel):
    """Set of OverrideRules with unique (target_origin, target_name) keys."""

    model_config = ConfigDict(frozen=True)

    rules: tuple[OverrideRule, ...] = ()

    @field_validator("rules")
    @classmethod
    def _sorted_unique(
        cls, rules: tuple[OverrideRule, ...]
    ) -> tuple[OverrideRule, ...]:
        keys = [rule.key for rule in rules]
        if len(set(keys)) != len(keys):
            raise ValueError("override manifest keys must be unique")
        return tuple(sorted(rules, key=lambda r: r.key))

    def __len__(self) -> int:
        return len(self.rules)

    def __contains__(self, key: object) -> bool:
        return any(rule.key == key for rule in self.rules)

    def get(self, origin: str, name: str) -> OverrideRule | None:
        for rule in self.rules:
            if rule.key == (origin, name):
                return rule
        return None

    def for_name(self, name: str) -> list[OverrideRule]:
        """All rules substituting a dependency called *name*."""
        return [rule for rule in self.rules if rule.target_name == name]

    def origins(self) -> list[str]:
        return sorted({rule.target_origin for rule in self.rules})

    def content_hash(self) -> str:
        """Content address of the manifest, independent of local paths."""
        return content_address([rule.summary() for rule in self.rules])
