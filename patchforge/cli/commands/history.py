"""``patchforge history [RUN_ID]`` — show recorded pipeline runs.

Without a run ID, lists known runs (most recent first).  With one, shows
each stage transition of that run and verifies its hash chain.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from patchforge.cli.context import LEDGER_OPTION, load_settings
from patchforge.cli.renderer import ForgeRenderer
from patchforge.core.run_ledger import LedgerIntegrityError, RunLedger

console = Console()


def history_cmd(
    run_id: str = typer.Argument(None, help="Run to show. Lists runs if omitted."),
    ledger: Path = LEDGER_OPTION,
) -> None:
    """Show the run ledger."""
    settings = load_settings(ledger=ledger)
    if not settings.ledger_path.exists():
        console.print(f"[bold red]Ledger not found:[/bold red] {settings.ledger_path}")
        raise typer.Exit(code=1)

    run_ledger = RunLedger(settings.ledger_path)

    if run_id is None:
        run_ids = run_ledger.get_all_run_ids()
        if not run_ids:
            console.print("[dim]No runs recorded.[/dim]")
            return
        table = Table(title="Runs", header_style="bold cyan")
        table.add_column("Run ID", style="cyan")
        table.add_column("Last stage")
        table.add_column("State")
        for rid in run_ids:
            last = run_ledger.get_run_entries(rid)[-1]
            table.add_row(rid, last.stage_id, last.state_transition.split("->")[-1])
        console.print(table)
        return

    entries = run_ledger.get_run_entries(run_id)
    if not entries:
        console.print(f"[bold red]No entries for run {run_id}[/bold red]")
        raise typer.Exit(code=1)

    try:
        valid = run_ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        console.print(f"[bold red]{escape(str(exc))}[/bold red]")
        valid = False

    ForgeRenderer(console=console).print_ledger(run_id, entries, valid)
    if not valid:
        raise typer.Exit(code=1)
