"""Rich terminal rendering for patchforge commands.

Color scheme
------------
- green     : verified / passed
- red       : mismatch / failed
- yellow    : running
- dim       : informational paths and hashes
"""

from __future__ import annotations

from pathlib import Path

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from patchforge.core.errors import (
    DuplicateOverrideError,
    FetchError,
    IntegrityError,
    LockMismatchError,
    PatchforgeError,
    ToolchainError,
)
from patchforge.core.source_store import StoreCorruptionError
from patchforge.models.build import Artifact
from patchforge.models.ledger import LedgerEntry
from patchforge.models.lock import MismatchReport
from patchforge.models.overrides import OverrideManifest
from patchforge.models.sources import FetchedTree

_TRANSITION_STYLES: dict[str, str] = {
    "running": "yellow",
    "passed": "green",
    "failed": "bold red",
}


def _short(digest: str, width: int = 19) -> str:
    return digest if len(digest) <= width else f"{digest[:width]}…"


class ForgeRenderer:
    """Renders pipeline results and failures as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def print_trees(self, trees: list[FetchedTree]) -> None:
        table = Table(title="Verified Sources", header_style="bold cyan")
        table.add_column("Pin", style="cyan")
        table.add_column("Revision")
        table.add_column("Digest", style="green")
        table.add_column("Path", style="dim")
        for tree in trees:
            table.add_row(
                tree.source.name or tree.source.url,
                tree.source.rev[:12],
                _short(tree.verified_hash),
                str(tree.local_path),
            )
        self.console.print(table)

    def print_manifest(self, manifest: OverrideManifest) -> None:
        table = Table(title="Override Manifest", header_style="bold cyan")
        table.add_column("Origin")
        table.add_column("Dependency", style="cyan")
        table.add_column("Replacement")
        table.add_column("Digest", style="green")
        for rule in manifest.rules:
            source = rule.replacement.source
            replacement = f"{source.url}@{source.rev[:12]}"
            if rule.subpath:
                replacement = f"{replacement}/{rule.subpath}"
            table.add_row(
                rule.target_origin,
                rule.target_name,
                replacement,
                _short(rule.replacement.verified_hash),
            )
        self.console.print(table)
        self.console.print(f"[dim]manifest hash: {manifest.content_hash()}[/dim]")

    def print_report(self, report: MismatchReport) -> None:
        if report.ok:
            self.console.print(
                f"[bold green]Lock cross-check passed[/bold green] "
                f"({len(report.checked)} entr{'y' if len(report.checked) == 1 else 'ies'})"
            )
            return
        table = Table(title="Lock Mismatches", header_style="bold red")
        table.add_column("Dependency", style="cyan")
        table.add_column("Kind", style="red")
        table.add_column("Declared")
        table.add_column("Verified")
        for m in report.mismatches:
            label = f"{m.dependency}-{m.lock_version}" if m.lock_version else m.dependency
            table.add_row(label, m.kind.value, m.declared or "-", m.verified or "-")
        self.console.print(table)

    def print_artifact(self, artifact: Artifact, wrapped: Path | None = None) -> None:
        lines = [
            "[bold green]Build complete![/bold green]",
            "",
            f"[bold]Binary:[/bold]   {artifact.name}",
            f"[bold]Address:[/bold]  {artifact.content_address}",
            f"[bold]Size:[/bold]     {artifact.size_bytes:,} bytes",
            f"[bold]Manifest:[/bold] {artifact.manifest_hash}",
            f"[bold]Platform:[/bold] {artifact.build_spec.host_platform}",
        ]
        if wrapped is not None:
            lines.append(f"[bold]Exported:[/bold] {wrapped}")
        self.console.print(
            Panel("\n".join(lines), title="[bold]Artifact[/bold]",
                  border_style="green", padding=(1, 2))
        )

    def print_ledger(self, run_id: str, entries: list[LedgerEntry], chain_valid: bool) -> None:
        table = Table(title=f"Run {run_id}", header_style="bold cyan")
        table.add_column("Stage", style="cyan")
        table.add_column("Transition")
        table.add_column("Input", style="dim")
        table.add_column("Output", style="dim")
        table.add_column("Detail")
        for entry in entries:
            to_state = entry.state_transition.split("->")[-1]
            style = _TRANSITION_STYLES.get(to_state, "")
            table.add_row(
                entry.stage_id,
                Text(entry.state_transition, style=style),
                entry.input_hash[:12],
                entry.output_hash[:12],
                Text(entry.detail),
            )
        chain = "[green]valid[/green]" if chain_valid else "[bold red]BROKEN[/bold red]"
        self.console.print(Group(table, Text.from_markup(f"[bold]Chain:[/bold] {chain}")))

    # ------------------------------------------------------------------
    # Failures
    # ------------------------------------------------------------------

    def print_error(self, exc: PatchforgeError) -> None:
        """Print a failure with the pin / rule / lock entry that caused it."""
        lines: list[str] = [f"[bold red]{type(exc).__name__}[/bold red]: {escape(str(exc))}"]

        if isinstance(exc, IntegrityError):
            lines += [
                "",
                f"[bold]Pin:[/bold]      {escape(exc.source.display_name())}",
                f"[bold]Expected:[/bold] {exc.expected}",
                f"[bold]Actual:[/bold]   {exc.actual}",
                "[dim]Content does not match the pin. Re-pin after reviewing the source.[/dim]",
            ]
        elif isinstance(exc, FetchError):
            lines += [
                "",
                f"[bold]Pin:[/bold] {escape(exc.source.display_name())}",
                "[dim]Retrieval failed; retrying may succeed.[/dim]",
            ]
        elif isinstance(exc, DuplicateOverrideError):
            origin, name = exc.key
            lines += [
                "",
                f"[bold]Key:[/bold]    ({escape(origin)}, {escape(name)})",
                f"[bold]First:[/bold]  {escape(str(exc.first))}",
                f"[bold]Second:[/bold] {escape(str(exc.second))}",
            ]
        elif isinstance(exc, StoreCorruptionError):
            lines += [
                "",
                "[dim]A stored artifact no longer matches its address. "
                "Remove it from the store, then rebuild.[/dim]",
            ]

        cause = exc.__cause__
        while cause is not None:
            lines.append(f"[dim]caused by {type(cause).__name__}: {escape(str(cause))}[/dim]")
            cause = cause.__cause__

        body: list[Text] = [Text.from_markup("\n".join(lines))]
        if isinstance(exc, ToolchainError) and exc.diagnostic:
            body += [Text(""), Text(exc.diagnostic.rstrip())]
        if isinstance(exc, LockMismatchError):
            self.print_report(exc.report)

        self.console.print(
            Panel(
                Group(*body),
                title=f"[bold]Pipeline halted (exit {int(exc.exit_code)})[/bold]",
                border_style="red",
                padding=(1, 2),
            )
        )
