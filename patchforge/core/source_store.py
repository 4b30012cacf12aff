"""Content-addressed, immutable store for source trees and built artifacts.

Storage layout::

    {root}/trees/{sha256[0:2]}/{sha256}/             verified source trees
    {root}/artifacts/{sha256[0:2]}/{sha256}.bin      built binaries
    {root}/identities/{sha256(url@rev)}.json         identity -> tree digest
    {root}/staging/                                  in-progress writes
    {root}/builds/{key}/                             private build roots (scratch)

Every write is staged under ``staging/`` (same filesystem) and published
with an atomic rename, so a reader never observes a partially-written
tree.  There is no update or delete: once published, an entry is
immutable.  Publishing content that is already present is a no-op.
``builds/`` is the exception: it holds per-build scratch directories
that the build driver creates and wipes.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path

from patchforge.core.errors import ExitCode, PatchforgeError
from patchforge.core.hasher import (
    canonical_json_bytes,
    file_sha256,
    normalize_digest,
    strip_prefix,
    tree_digest,
)
from patchforge.models.sources import PinnedSource

logger = logging.getLogger(__name__)


class StoreCorruptionError(PatchforgeError):
    """Raised when stored content no longer hashes to its address."""

    exit_code = ExitCode.INTEGRITY


class SourceStore:
    """SHA-256 keyed store shared by every pipeline run.

    Parameters
    ----------
    root:
        Root directory of the store.  Created if missing.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        for sub in ("trees", "artifacts", "identities", "staging", "builds"):
            (self._root / sub).mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def tree_path(self, digest: str) -> Path:
        hex_digest = strip_prefix(normalize_digest(digest))
        return self._root / "trees" / hex_digest[:2] / hex_digest

    def artifact_path(self, digest: str) -> Path:
        hex_digest = strip_prefix(normalize_digest(digest))
        return self._root / "artifacts" / hex_digest[:2] / f"{hex_digest}.bin"

    def _identity_path(self, source: PinnedSource) -> Path:
        return self._root / "identities" / f"{source.identity_key()}.json"

    def build_dir(self, key: str) -> Path:
        """Scratch directory for the build identified by *key*.  Not created."""
        return self._root / "builds" / key

    def staging_dir(self, prefix: str = "fetch-") -> Path:
        """Create a fresh private directory for an in-progress write."""
        return Path(tempfile.mkdtemp(prefix=prefix, dir=self._root / "staging"))

    # ------------------------------------------------------------------
    # Trees
    # ------------------------------------------------------------------

    def has_tree(self, digest: str) -> bool:
        return self.tree_path(digest).is_dir()

    def publish_tree(self, staged: Path, digest: str) -> Path:
        """Move a verified staged tree to its content address.

        The caller has already hashed *staged* to *digest*.  If another
        writer published the same digest first, the staged copy is
        discarded and the existing tree is returned.
        """
        final = self.tree_path(digest)
        final.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(staged, final)
        except OSError:
            # Target directory already exists (non-empty): another writer won.
            if not final.is_dir():
                raise
            logger.debug("Tree %s already published; discarding staged copy", digest)
            shutil.rmtree(staged, ignore_errors=True)
        return final

    def verify_tree(self, digest: str) -> bool:
        """Re-hash a stored tree and compare against its address."""
        path = self.tree_path(digest)
        if not path.is_dir():
            return False
        return tree_digest(path) == normalize_digest(digest)

    # ------------------------------------------------------------------
    # Identity index
    # ------------------------------------------------------------------

    def lookup_identity(self, source: PinnedSource) -> str | None:
        """Return the digest previously verified for this (url, rev)."""
        path = self._identity_path(source)
        if not path.exists():
            return None
        record = json.loads(path.read_text(encoding="utf-8"))
        return record.get("digest")

    def record_identity(self, source: PinnedSource, digest: str) -> None:
        """Atomically record that (url, rev) resolved to *digest*."""
        record = {
            "url": source.url,
            "rev": source.rev,
            "digest": normalize_digest(digest),
        }
        self._atomic_write(self._identity_path(source), canonical_json_bytes(record))

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def store_artifact(self, binary: Path) -> tuple[str, Path]:
        """Copy a built binary into the store.  Returns (digest, path)."""
        digest = f"sha256:{file_sha256(binary)}"
        final = self.artifact_path(digest)
        if final.exists():
            if f"sha256:{file_sha256(final)}" != digest:
                raise StoreCorruptionError(
                    f"Existing artifact at {digest} failed integrity check"
                )
            return digest, final

        final.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix="artifact-", dir=self._root / "staging")
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            shutil.copyfile(binary, tmp)
            tmp.chmod(0o555)
            os.replace(tmp, final)
        finally:
            tmp.unlink(missing_ok=True)
        return digest, final

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _atomic_write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".tmp-", dir=path.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
