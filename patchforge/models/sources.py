"""Pinned source and fetched tree models.

A PinnedSource is static configuration: a (url, rev) identity plus the
digest its content must hash to.  A FetchedTree exists only once that
digest has been verified against real content.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from patchforge.core.hasher import normalize_digest, sha256_hex


class PinnedSource(BaseModel):
    """A fixed (location, revision) reference plus its expected digest.

    ``expected_hash`` may be given in SRI, ``sha256:<hex>`` or bare hex
    form; it is stored normalized as ``sha256:<hex>``.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    rev: str
    expected_hash: str
    name: str = ""  # declaration name in patchforge.toml, for messages

    @field_validator("url", "rev")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("expected_hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        return normalize_digest(value)

    @property
    def identity(self) -> tuple[str, str]:
        """The (url, rev) pair that must always resolve to the same digest."""
        return (self.url, self.rev)

    def identity_key(self) -> str:
        """Filesystem-safe key for the identity index."""
        return sha256_hex(f"{self.url}@{self.rev}".encode("utf-8"))

    def display_name(self) -> str:
        label = f"{self.url}@{self.rev[:12]}"
        return f"{self.name} ({label})" if self.name else label


class FetchedTree(BaseModel):
    """A local, immutable source tree whose digest has been verified."""

    model_config = ConfigDict(frozen=True)

    source: PinnedSource
    local_path: Path
    verified_hash: str

    @field_validator("verified_hash")
    @classmethod
    def _normalize_hash(cls, value: str) -> str:
        return normalize_digest(value)

    @model_validator(mode="after")
    def _verified_matches_pin(self) -> FetchedTree:
        if self.verified_hash != self.source.expected_hash:
            raise ValueError(
                f"verified hash {self.verified_hash} does not match pinned "
                f"hash {self.source.expected_hash} for {self.source.display_name()}"
            )
        return self
