"""Pipeline error taxonomy and process exit codes.

Every stage fails closed: a stage either returns a complete, verified
result or raises one of the errors below.  Each error class carries the
exit code the CLI reports, so scripting callers can tell the failure
classes apart without parsing output.

    FetchError              transient, retry-eligible at the caller's discretion
    IntegrityError          content hash mismatch, never retried
    DuplicateOverrideError  two overrides claim the same key
    LockMismatchError       lock description drifted from the override manifest
    ToolchainError          compile/link failure, diagnostic passed through
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from patchforge.models.lock import MismatchReport
    from patchforge.models.sources import PinnedSource


class ExitCode(IntEnum):
    """Process exit status for each failure class."""

    OK = 0
    FAILURE = 1
    CONFIG = 2
    FETCH = 10
    INTEGRITY = 11
    DUPLICATE_OVERRIDE = 12
    LOCK_MISMATCH = 13
    TOOLCHAIN = 14


class PatchforgeError(RuntimeError):
    """Base class for every pipeline failure."""

    exit_code: ExitCode = ExitCode.FAILURE


class ConfigError(PatchforgeError):
    """Raised for invalid declarations: forge file, lock file, platform."""

    exit_code = ExitCode.CONFIG


class FetchError(PatchforgeError):
    """Raised when a pinned source cannot be retrieved."""

    exit_code = ExitCode.FETCH

    def __init__(self, source: PinnedSource, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to fetch {source.display_name()}: {reason}")


class IntegrityError(PatchforgeError):
    """Raised when fetched content does not hash to the pinned digest.

    Carries both digests.  This signals tampering or a stale pin and
    requires a human to re-pin; it is never retried.
    """

    exit_code = ExitCode.INTEGRITY

    def __init__(
        self,
        source: PinnedSource,
        expected: str,
        actual: str,
        *,
        detail: str = "",
    ) -> None:
        self.source = source
        self.expected = expected
        self.actual = actual
        self.detail = detail
        message = (
            f"Integrity check failed for {source.display_name()}: "
            f"expected {expected}, got {actual}"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DuplicateOverrideError(PatchforgeError):
    """Raised when two override rules share a key but differ in replacement."""

    exit_code = ExitCode.DUPLICATE_OVERRIDE

    def __init__(
        self, key: tuple[str, str], first: dict[str, Any], second: dict[str, Any]
    ) -> None:
        self.key = key
        self.first = first
        self.second = second
        origin, name = key
        super().__init__(
            f"Conflicting overrides for {name!r} from {origin!r}: "
            f"{first} vs {second}"
        )


class LockMismatchError(PatchforgeError):
    """Raised when the lock cross-check reports any mismatch."""

    exit_code = ExitCode.LOCK_MISMATCH

    def __init__(self, report: MismatchReport) -> None:
        self.report = report
        details = "; ".join(m.describe() for m in report.mismatches)
        super().__init__(
            f"Lock description disagrees with override manifest: {details}"
        )


class ToolchainError(PatchforgeError):
    """Raised when the toolchain fails to build the requested target.

    ``diagnostic`` is the toolchain's own output, unmodified.
    """

    exit_code = ExitCode.TOOLCHAIN

    def __init__(self, returncode: int | None, diagnostic: str, *, command: str = "") -> None:
        self.returncode = returncode
        self.diagnostic = diagnostic
        self.command = command
        if returncode is None:
            summary = "Toolchain did not complete"
        else:
            summary = f"Toolchain exited with status {returncode}"
        if command:
            summary = f"{summary}: {command}"
        super().__init__(summary)
