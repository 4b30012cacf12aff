"""Lock description entries and cross-check reports."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator

from patchforge.core.hasher import normalize_digest


class LockEntry(BaseModel):
    """One resolved dependency from the project's lock description.

    ``declared_hash`` is empty when the lock declares no digest for the
    entry (git dependencies without a pinned output hash).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    declared_hash: str = ""
    source: str = ""  # e.g. "git+https://github.com/org/repo?rev=...#<commit>"

    @field_validator("declared_hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        return normalize_digest(value) if value else ""

    @property
    def label(self) -> str:
        return f"{self.name}-{self.version}"


class MismatchKind(str, Enum):
    """Ways a lock description can drift from the override manifest."""

    HASH_MISMATCH = "hash_mismatch"
    MISSING_LOCK_ENTRY = "missing_lock_entry"
    UNMAPPED_LOCK_ENTRY = "unmapped_lock_entry"
    VERSION_MISMATCH = "version_mismatch"


class Mismatch(BaseModel):
    """A single disagreement between a lock entry and an override rule."""

    model_config = ConfigDict(frozen=True)

    dependency: str
    kind: MismatchKind
    origin: str = ""
    lock_version: str = ""
    declared: str = ""  # what the lock says
    verified: str = ""  # what the fetched tree hashed to, or expected version

    def describe(self) -> str:
        label = self.dependency
        if self.lock_version:
            label = f"{label}-{self.lock_version}"
        if self.kind is MismatchKind.HASH_MISMATCH:
            declared = self.declared or "<none>"
            return f"{label}: lock declares {declared}, override verified {self.verified}"
        if self.kind is MismatchKind.VERSION_MISMATCH:
            return f"{label}: override expects version {self.verified}"
        if self.kind is MismatchKind.MISSING_LOCK_ENTRY:
            return f"{label}: overridden from {self.origin} but absent from the lock"
        return f"{label}: locked from overridden origin {self.origin} but has no override"


class MismatchReport(BaseModel):
    """Result of a lock cross-check.  ``ok`` means no mismatches ("Ok")."""

    model_config = ConfigDict(frozen=True)

    mismatches: tuple[Mismatch, ...] = ()
    checked: tuple[str, ...] = ()  # dependency labels that passed

    @property
    def ok(self) -> bool:
        return not self.mismatches

    def dependencies(self) -> list[str]:
        """Names of the dependencies that triggered a mismatch."""
        return sorted({m.dependency for m in self.mismatches})
