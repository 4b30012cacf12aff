"""Main Typer application — imports and registers all CLI commands.

Entry point: ``patchforge`` (configured via pyproject.toml scripts).

Commands: build, verify, fetch, render, history, hash, platforms.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from patchforge.cli.commands.build import build_cmd
from patchforge.cli.commands.history import history_cmd
from patchforge.cli.commands.inspect import fetch_cmd, hash_cmd, render_cmd
from patchforge.cli.commands.verify import verify_cmd
from patchforge.config import ForgeConfig

app = typer.Typer(
    name="patchforge",
    help="patchforge: hermetic builds with pinned, verified dependency overrides.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    level = "DEBUG" if verbose else ForgeConfig().log_level.upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="build", help="Run the full pipeline and build the artifact.")(build_cmd)
app.command(name="verify", help="Fetch pins and cross-check the lock; no build.")(verify_cmd)
app.command(name="fetch", help="Fetch and verify every declared pin.")(fetch_cmd)
app.command(name="render", help="Print the rendered Cargo override config.")(render_cmd)
app.command(name="history", help="Show recorded runs from the ledger.")(history_cmd)
app.command(name="hash", help="Print the tree digest of a local directory.")(hash_cmd)


@app.command(name="platforms", help="Show the native library table per host platform.")
def platforms_cmd() -> None:
    """List required native libraries for each supported platform family."""
    from patchforge.core.platforms import NATIVE_BUILD_TOOLS, NATIVE_LIBRARIES, describe_host

    console = Console()
    host = describe_host()

    table = Table(title="Native Libraries")
    table.add_column("Platform", style="cyan")
    table.add_column("Libraries")
    table.add_column("Host", justify="center")
    for name, libraries in sorted(NATIVE_LIBRARIES.items()):
        marker = "[green]*[/green]" if name == host["platform"] else ""
        table.add_row(name, ", ".join(sorted(libraries)), marker)

    console.print(table)
    console.print(f"[dim]Build tools: {', '.join(sorted(NATIVE_BUILD_TOOLS))}[/dim]")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
