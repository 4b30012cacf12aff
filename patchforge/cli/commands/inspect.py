"""``patchforge fetch``, ``render`` and ``hash`` — inspect pins and overrides.

``fetch`` materializes every declared pin into the store and shows the
verified digests.  ``render`` prints the Cargo ``[patch]`` configuration
the hermetic build would receive, without building.  ``hash`` prints the
tree digest of a local directory in both accepted spellings.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from patchforge.cli.context import CONFIG_OPTION, STORE_OPTION, load_inputs, pipeline_errors
from patchforge.cli.renderer import ForgeRenderer
from patchforge.config import ForgeConfig
from patchforge.core.cargo_config import render_cargo_config
from patchforge.core.errors import ExitCode
from patchforge.core.fetcher import Fetcher
from patchforge.core.hasher import to_sri, tree_digest
from patchforge.core.manifest_builder import ManifestBuilder
from patchforge.core.retrievers import GitRetriever
from patchforge.core.source_store import SourceStore

console = Console()


def _fetcher(settings: ForgeConfig) -> Fetcher:
    return Fetcher(
        SourceStore(settings.store_path),
        git_retriever=GitRetriever(settings.git_binary, timeout=settings.fetch_timeout_seconds),
        max_workers=settings.max_fetch_workers,
        verify_on_hit=settings.verify_on_hit,
    )


def fetch_cmd(
    config_path: Path = CONFIG_OPTION,
    store: Path = STORE_OPTION,
) -> None:
    """Fetch and verify every declared pin."""
    renderer = ForgeRenderer(console=console)
    with pipeline_errors(renderer):
        forge, settings = load_inputs(config_path, store)
        sources = list(forge.pinned_sources().values())
        trees = _fetcher(settings).fetch_all(sources)
    renderer.print_trees(trees)


def render_cmd(
    config_path: Path = CONFIG_OPTION,
    store: Path = STORE_OPTION,
    output: Path = typer.Option(
        None, "--output", "-o", help="Write the config here instead of stdout."
    ),
) -> None:
    """Print the Cargo override configuration for the declared overrides."""
    renderer = ForgeRenderer(console=console)
    with pipeline_errors(renderer):
        forge, settings = load_inputs(config_path, store)
        manifest = ManifestBuilder(_fetcher(settings)).build(forge.override_specs())
    text = render_cargo_config(manifest)
    if output is not None:
        output.write_text(text, encoding="utf-8")
        console.print(f"[green]Wrote[/green] {output}")
    else:
        typer.echo(text, nl=False)


def hash_cmd(
    path: Path = typer.Argument(..., help="Source tree to digest."),
) -> None:
    """Print the tree digest of a local directory, for use as a pin hash."""
    if not path.is_dir():
        console.print(f"[bold red]Not a directory:[/bold red] {path}")
        raise typer.Exit(code=int(ExitCode.CONFIG))
    digest = tree_digest(path)
    typer.echo(digest)
    typer.echo(to_sri(digest))
