"""Render an OverrideManifest into Cargo's ``[patch]`` configuration syntax.

This is a stateless serialization step: sections and entries are sorted,
so the same manifest always renders to the same bytes.

    [patch.crates-io]
    ratatui = { path = "/store/trees/1d/1d05.../" }

    [patch."https://github.com/modelcontextprotocol/rust-sdk"]
    rmcp = { path = "/store/trees/b8/b801.../crates/rmcp" }
"""

from __future__ import annotations

import json
import re

from patchforge.models.overrides import CRATES_IO, OverrideManifest

_BARE_KEY = re.compile(r"^[A-Za-z0-9_-]+$")

HEADER = "# Generated by patchforge. Do not edit.\n"


def toml_string(value: str) -> str:
    """Quote *value* as a TOML basic string."""
    return json.dumps(value, ensure_ascii=False)


def toml_key(key: str) -> str:
    return key if _BARE_KEY.match(key) else toml_string(key)


def patch_section(origin: str) -> str:
    """Section header for overrides of dependencies from *origin*."""
    if origin == CRATES_IO:
        return f"[patch.{CRATES_IO}]"
    return f"[patch.{toml_string(origin)}]"


def render_cargo_config(manifest: OverrideManifest) -> str:
    """Serialize *manifest* as the contents of ``$CARGO_HOME/config.toml``."""
    lines: list[str] = [HEADER.rstrip("\n")]
    for origin in manifest.origins():
        lines.append("")
        lines.append(patch_section(origin))
        rules = sorted(
            (rule for rule in manifest.rules if rule.target_origin == origin),
            key=lambda r: r.target_name,
        )
        for rule in rules:
            path = rule.crate_path.as_posix()
            lines.append(f"{toml_key(rule.target_name)} = {{ path = {toml_string(path)} }}")
    return "\n".join(lines) + "\n"
