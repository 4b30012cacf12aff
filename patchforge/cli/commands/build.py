"""``patchforge build`` — run the full pipeline and produce the artifact.

Fetches and verifies every pin, builds the override manifest, passes the
lock gate and then builds the single declared binary in a hermetic
environment.  Exits non-zero with a class-specific status on failure.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from patchforge.cli.context import (
    CONFIG_OPTION,
    LEDGER_OPTION,
    STORE_OPTION,
    load_inputs,
    pipeline_errors,
)
from patchforge.cli.renderer import ForgeRenderer
from patchforge.core.pipeline import Pipeline
from patchforge.core.wrapper import SidecarWrapper

console = Console()


def build_cmd(
    config_path: Path = CONFIG_OPTION,
    platform: str = typer.Option(
        None,
        "--platform",
        "-p",
        help="Host platform family (linux, darwin). Defaults to the forge file's, then the host's.",
    ),
    out_dir: Path = typer.Option(
        None,
        "--out",
        "-o",
        help="Export the binary and its metadata sidecar to this directory.",
    ),
    store: Path = STORE_OPTION,
    ledger: Path = LEDGER_OPTION,
) -> None:
    """Fetch, verify, cross-check and build the declared binary."""
    renderer = ForgeRenderer(console=console)
    with pipeline_errors(renderer):
        forge, settings = load_inputs(config_path, store, ledger)
        wrapper = SidecarWrapper(out_dir) if out_dir is not None else None
        pipeline = Pipeline(forge, config=settings, wrapper=wrapper)
        console.print(f"[bold cyan]Run {pipeline.run_id}[/bold cyan]")
        result = pipeline.run(platform)

    renderer.print_manifest(result.manifest)
    renderer.print_report(result.report)
    if result.artifact is not None:
        renderer.print_artifact(result.artifact, result.wrapped_path)
