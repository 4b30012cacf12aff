"""Helpers shared by CLI commands: loading inputs and mapping failures to exit codes."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from patchforge.cli.renderer import ForgeRenderer
from patchforge.config import ForgeConfig
from patchforge.core.errors import ConfigError, PatchforgeError
from patchforge.models.config import DEFAULT_FORGE_FILE, ForgeFile, load_forge_file

CONFIG_OPTION = typer.Option(
    Path(DEFAULT_FORGE_FILE),
    "--config",
    "-c",
    help="Path to the patchforge.toml declaration file.",
)
STORE_OPTION = typer.Option(
    None,
    "--store",
    "-s",
    help="Content-addressed store directory (overrides PATCHFORGE_STORE_PATH).",
)
LEDGER_OPTION = typer.Option(
    None,
    "--ledger",
    "-l",
    help="Run ledger database (overrides PATCHFORGE_LEDGER_PATH).",
)


def load_settings(store: Path | None = None, ledger: Path | None = None) -> ForgeConfig:
    try:
        settings = ForgeConfig()
    except ValueError as exc:
        raise ConfigError(f"Invalid PATCHFORGE_* setting: {exc}") from exc
    updates: dict[str, Path] = {}
    if store is not None:
        updates["store_path"] = store
    if ledger is not None:
        updates["ledger_path"] = ledger
    return settings.model_copy(update=updates) if updates else settings


def load_inputs(
    config_path: Path, store: Path | None = None, ledger: Path | None = None
) -> tuple[ForgeFile, ForgeConfig]:
    return load_forge_file(config_path), load_settings(store, ledger)


@contextmanager
def pipeline_errors(renderer: ForgeRenderer) -> Iterator[None]:
    """Render PatchforgeErrors and exit with their distinguishing status."""
    try:
        yield
    except PatchforgeError as exc:
        renderer.print_error(exc)
        raise typer.Exit(code=int(exc.exit_code)) from exc
