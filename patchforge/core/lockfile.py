"""Read the project's lock description into LockEntry values.

The lock description is the project's ``Cargo.lock`` plus a table of
declared output hashes for dependencies whose lock entries carry no
checksum of their own (git sources), keyed ``"<name>-<version>"``.
Both inputs are read-only.
"""

from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path

from pydantic import ValidationError

from patchforge.core.errors import ConfigError
from patchforge.models.lock import LockEntry

logger = logging.getLogger(__name__)


def parse_lock(
    data: Mapping[str, object], output_hashes: Mapping[str, str] | None = None
) -> list[LockEntry]:
    """Build LockEntry values from parsed ``Cargo.lock`` data."""
    output_hashes = output_hashes or {}
    packages = data.get("package", [])
    if not isinstance(packages, list):
        raise ConfigError("Lock file has no [[package]] array")

    entries: list[LockEntry] = []
    for index, package in enumerate(packages):
        if not isinstance(package, dict) or "name" not in package or "version" not in package:
            raise ConfigError(f"Lock package #{index} is missing name or version")
        name = str(package["name"])
        version = str(package["version"])
        declared = output_hashes.get(f"{name}-{version}") or str(package.get("checksum", ""))
        try:
            entries.append(
                LockEntry(
                    name=name,
                    version=version,
                    declared_hash=declared,
                    source=str(package.get("source", "")),
                )
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid declared hash for {name}-{version}: {exc}") from exc

    unused = set(output_hashes) - {entry.label for entry in entries}
    if unused:
        logger.warning(
            "Declared output hashes match no locked package: %s", ", ".join(sorted(unused))
        )
    return entries


def load_lock(
    path: Path, output_hashes: Mapping[str, str] | None = None
) -> list[LockEntry]:
    """Read ``Cargo.lock`` at *path*.  Raises ConfigError if unreadable."""
    path = Path(path)
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Lock file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid lock file {path}: {exc}") from exc
    entries = parse_lock(data, output_hashes)
    logger.debug("Read %d locked package(s) from %s", len(entries), path)
    return entries
