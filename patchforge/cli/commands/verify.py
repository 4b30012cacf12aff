"""``patchforge verify`` — check pins and lock consistency without building."""

from __future__ import annotations

from pathlib import Path

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

console = Console()


def verify_cmd(
    config_path: Path = CONFIG_OPTION,
    store: Path = STORE_OPTION,
    ledger: Path = LEDGER_OPTION,
) -> None:
    """Fetch every pin, build the override manifest and cross-check the lock.

    Exits with the same status codes as ``build``; the toolchain is never
    invoked.
    """
    renderer = ForgeRenderer(console=console)
    with pipeline_errors(renderer):
        forge, settings = load_inputs(config_path, store, ledger)
        result = Pipeline(forge, config=settings).plan()

    renderer.print_manifest(result.manifest)
    renderer.print_report(result.report)
