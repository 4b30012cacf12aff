"""Runtime configuration — env-driven via pydantic-settings.

Reads ``PATCHFORGE_*`` environment variables and an optional ``.env``
file.  Project declarations (pins, overrides, build target) live in
``patchforge.toml`` instead; see ``patchforge.models.config``.

Examples
--------
Override via environment::

    export PATCHFORGE_STORE_PATH=/var/cache/patchforge
    export PATCHFORGE_LOG_LEVEL=DEBUG
    export PATCHFORGE_TOOLCHAIN_PATHS='["/opt/rust/bin", "/usr/bin"]'
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeConfig(BaseSettings):
    """Process-wide settings with environment variable overrides."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PATCHFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Storage paths
    store_path: Path = Path(".patchforge/store")
    ledger_path: Path = Path(".patchforge/ledger.db")

    # Fetching
    max_fetch_workers: int = 4
    fetch_timeout_seconds: int = 600
    verify_on_hit: bool = True
    git_binary: str = "git"

    # Hermetic build
    cargo_binary: str = "cargo"
    toolchain_paths: list[Path] = Field(default_factory=list)  # hermetic PATH
    library_prefixes: dict[str, Path] = Field(default_factory=dict)
    terminate_grace_seconds: float = 10.0
    keep_build_env: bool = False
