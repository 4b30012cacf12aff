"""Canonical hashing helpers for content addressing and digest normalization.

All digests leave this module in the canonical ``sha256:<hex>`` form.
Declared hashes arrive in several spellings (SRI ``sha256-<base64>``,
``sha256:<hex>`` or a bare hex digest) and are normalized before any
comparison.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
import stat
from pathlib import Path
from typing import Any

SHA256_PREFIX = "sha256:"

# Directory names never included in a tree digest.
IGNORED_TREE_ENTRIES: frozenset[str] = frozenset({".git", ".hg", ".svn"})

_CHUNK_SIZE = 1 << 20


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """Content-address a JSON-serializable object as ``sha256:<hex>``."""
    return f"{SHA256_PREFIX}{sha256_hex(canonical_json_bytes(obj))}"


def compute_input_hash(stage_id: str, inputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted inputs)."""
    payload = {"stage_id": stage_id, "inputs": inputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_output_hash(stage_id: str, outputs: dict[str, Any]) -> str:
    """SHA-256 of canonical(stage_id + sorted outputs)."""
    payload = {"stage_id": stage_id, "outputs": outputs}
    return sha256_hex(canonical_json_bytes(payload))


def compute_entry_hash(entry_dict: dict[str, Any]) -> str:
    """SHA-256 of a ledger entry (excluding the entry_hash field itself)."""
    d = {k: v for k, v in entry_dict.items() if k != "entry_hash"}
    return sha256_hex(canonical_json_bytes(d))


# ---------------------------------------------------------------------------
# Digest normalization
# ---------------------------------------------------------------------------


def normalize_digest(value: str) -> str:
    """Normalize a SHA-256 digest to ``sha256:<lowercase hex>``.

    Accepts:
        * ``sha256:<hex>``
        * ``sha256-<base64>`` (Subresource Integrity form)
        * a bare 64-character hex digest

    Raises ``ValueError`` for anything else, including other algorithms.
    """
    text = value.strip()
    if text.startswith(SHA256_PREFIX):
        hex_digest = text[len(SHA256_PREFIX):].lower()
    elif text.startswith("sha256-"):
        try:
            raw = base64.b64decode(text[len("sha256-"):], validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Invalid base64 in SRI digest {value!r}") from exc
        if len(raw) != hashlib.sha256().digest_size:
            raise ValueError(f"SRI digest {value!r} is not 32 bytes long")
        hex_digest = raw.hex()
    else:
        hex_digest = text.lower()

    if len(hex_digest) != 64 or any(c not in "0123456789abcdef" for c in hex_digest):
        raise ValueError(f"Not a SHA-256 digest: {value!r}")
    return f"{SHA256_PREFIX}{hex_digest}"


def to_sri(digest: str) -> str:
    """Render a digest in SRI form (``sha256-<base64>``)."""
    hex_digest = normalize_digest(digest)[len(SHA256_PREFIX):]
    return "sha256-" + base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def strip_prefix(digest: str) -> str:
    """Strip the ``sha256:`` prefix from a digest, if present."""
    return digest.removeprefix(SHA256_PREFIX)


# ---------------------------------------------------------------------------
# File and tree digests
# ---------------------------------------------------------------------------


def file_sha256(path: Path) -> str:
    """Return the SHA-256 hex digest of a file's content, streamed."""
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


def tree_entries(root: Path) -> list[dict[str, Any]]:
    """List the hashed entries of a source tree in canonical order.

    Each entry records the POSIX relative path, the entry type, the
    executable bit and the SHA-256 of the file content (or the link
    target for symlinks).  Directories contribute only through their
    contents; VCS metadata is skipped.
    """
    root = Path(root)
    entries: list[dict[str, Any]] = []

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_TREE_ENTRIES)
        current = Path(dirpath)

        names = sorted(filenames + [d for d in dirnames if (current / d).is_symlink()])
        for name in names:
            if name in IGNORED_TREE_ENTRIES:
                continue
            full = current / name
            rel = full.relative_to(root).as_posix()
            st = full.lstat()
            if stat.S_ISLNK(st.st_mode):
                target = os.readlink(full)
                entries.append({
                    "path": rel,
                    "type": "symlink",
                    "sha256": sha256_hex(target.encode("utf-8")),
                })
            elif stat.S_ISREG(st.st_mode):
                entries.append({
                    "path": rel,
                    "type": "file",
                    "executable": bool(st.st_mode & stat.S_IXUSR),
                    "sha256": file_sha256(full),
                })

        # Symlinked directories were recorded above as links; do not descend.
        dirnames[:] = [d for d in dirnames if not (current / d).is_symlink()]

    entries.sort(key=lambda e: e["path"])
    return entries


def tree_digest(root: Path) -> str:
    """Compute the canonical ``sha256:<hex>`` digest of a directory tree."""
    return content_address(tree_entries(root))
