"""Lock cross-checker — the gate between the override manifest and the build.

A lock description and an override manifest can drift apart silently:
the override is re-pinned but the lock is not, or the other way round.
The build would then link a different version of a substituted
dependency than the one the lock claims, with no build-time signal.
This gate compares the two and halts the pipeline on any disagreement.

Checks, per override rule:
    * the lock has at least one entry for the overridden name;
    * the entry's version matches the rule's expected version, if any;
    * the entry's declared hash equals the replacement's verified hash.

And, per lock entry:
    * an entry locked from an overridden git origin must itself be
      covered by an override for that origin.

Declared and verified digests are both normalized to ``sha256:<hex>``
and compared independently of the pin's own expected hash.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from patchforge.core.errors import LockMismatchError
from patchforge.core.hasher import normalize_digest
from patchforge.models.lock import LockEntry, Mismatch, MismatchKind, MismatchReport
from patchforge.models.overrides import CRATES_IO, OverrideManifest

logger = logging.getLogger(__name__)


def _canonical_origin(url: str) -> str:
    url = url.strip().rstrip("/")
    return url.removesuffix(".git").lower()


def lock_source_origin(source: str) -> str | None:
    """Repository URL of a git lock source, or None for other sources.

    ``git+https://github.com/org/repo?rev=abc#abc`` -> ``https://github.com/org/repo``
    """
    if not source.startswith("git+"):
        return None
    url = source[len("git+"):]
    for sep in ("#", "?"):
        url = url.split(sep, 1)[0]
    return _canonical_origin(url)


class LockCrossChecker:
    """Validates a lock description against an OverrideManifest."""

    def verify(
        self, manifest: OverrideManifest, lock: Sequence[LockEntry]
    ) -> MismatchReport:
        """Compare *lock* with *manifest*; an empty report means Ok."""
        mismatches: list[Mismatch] = []
        checked: list[str] = []

        for rule in manifest.rules:
            entries = [entry for entry in lock if entry.name == rule.target_name]
            if not entries:
                mismatches.append(Mismatch(
                    dependency=rule.target_name,
                    kind=MismatchKind.MISSING_LOCK_ENTRY,
                    origin=rule.target_origin,
                    verified=rule.replacement.verified_hash,
                ))
                continue

            verified = normalize_digest(rule.replacement.verified_hash)
            for entry in entries:
                entry_ok = True
                if rule.version is not None and entry.version != rule.version:
                    entry_ok = False
                    mismatches.append(Mismatch(
                        dependency=entry.name,
                        kind=MismatchKind.VERSION_MISMATCH,
                        origin=rule.target_origin,
                        lock_version=entry.version,
                        verified=rule.version,
                    ))
                declared = normalize_digest(entry.declared_hash) if entry.declared_hash else ""
                if declared != verified:
                    entry_ok = False
                    mismatches.append(Mismatch(
                        dependency=entry.name,
                        kind=MismatchKind.HASH_MISMATCH,
                        origin=rule.target_origin,
                        lock_version=entry.version,
                        declared=declared,
                        verified=verified,
                    ))
                if entry_ok:
                    checked.append(entry.label)

        overridden_origins = {
            _canonical_origin(origin): origin
            for origin in manifest.origins()
            if origin != CRATES_IO
        }
        for entry in lock:
            origin = lock_source_origin(entry.source)
            if origin is None or origin not in overridden_origins:
                continue
            declared_origin = overridden_origins[origin]
            if manifest.get(declared_origin, entry.name) is None:
                mismatches.append(Mismatch(
                    dependency=entry.name,
                    kind=MismatchKind.UNMAPPED_LOCK_ENTRY,
                    origin=declared_origin,
                    lock_version=entry.version,
                    declared=entry.declared_hash,
                ))

        report = MismatchReport(mismatches=tuple(mismatches), checked=tuple(checked))
        if report.ok:
            logger.info("Lock cross-check passed for %d entr(ies)", len(checked))
        else:
            for mismatch in report.mismatches:
                logger.error("Lock mismatch: %s", mismatch.describe())
        return report

    def enforce(
        self, manifest: OverrideManifest, lock: Sequence[LockEntry]
    ) -> MismatchReport:
        """Like ``verify`` but raises ``LockMismatchError`` unless Ok."""
        report = self.verify(manifest, lock)
        if not report.ok:
            raise LockMismatchError(report)
        return report
