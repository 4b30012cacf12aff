"""patchforge data models — all Pydantic v2, all frozen (immutable)."""

from patchforge.models.build import Artifact, BuildSpec, WrapperRequest
from patchforge.models.config import ForgeFile, load_forge_file
from patchforge.models.ledger import LedgerEntry
from patchforge.models.lock import LockEntry, Mismatch, MismatchKind, MismatchReport
from patchforge.models.overrides import (
    CRATES_IO,
    OverrideManifest,
    OverrideRule,
    OverrideSpec,
)
from patchforge.models.sources import FetchedTree, PinnedSource

__all__ = [
    # sources
    "PinnedSource",
    "FetchedTree",
    # overrides
    "CRATES_IO",
    "OverrideSpec",
    "OverrideRule",
    "OverrideManifest",
    # lock
    "LockEntry",
    "Mismatch",
    "MismatchKind",
    "MismatchReport",
    # build
    "BuildSpec",
    "Artifact",
    "WrapperRequest",
    # ledger
    "LedgerEntry",
    # config
    "ForgeFile",
    "load_forge_file",
]
