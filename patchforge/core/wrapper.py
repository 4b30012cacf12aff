"""Artifact Wrapper boundary.

Packaging the produced binary (description, license, entry-point naming)
belongs to an external collaborator.  The pipeline only guarantees that
the wrapper receives a valid Artifact plus the supported platform set.

``SidecarWrapper`` is the default: it exports the binary under its
entry-point name and writes a JSON metadata file beside it.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Protocol, runtime_checkable

from patchforge.models.build import WrapperRequest

logger = logging.getLogger(__name__)


@runtime_checkable
class ArtifactWrapper(Protocol):
    """Protocol for packaging backends."""

    def wrap(self, request: WrapperRequest) -> Path:
        """Package the artifact and return a runnable handle (its path)."""
        ...


class SidecarWrapper:
    """Export the binary and a ``<name>.json`` metadata sidecar.

    Parameters
    ----------
    out_dir:
        Directory receiving the exported binary.  Created if missing.
    """

    def __init__(self, out_dir: Path) -> None:
        self._out = Path(out_dir)

    def wrap(self, request: WrapperRequest) -> Path:
        artifact = request.artifact
        program = request.main_program or artifact.name
        self._out.mkdir(parents=True, exist_ok=True)

        target = self._out / program
        tmp = self._out / f".{program}.tmp"
        shutil.copyfile(artifact.path, tmp)
        tmp.chmod(0o755)
        os.replace(tmp, target)

        metadata = {
            "name": program,
            "description": request.description,
            "license": request.license,
            "homepage": request.homepage,
            "platforms": sorted(request.platforms),
            "content_address": artifact.content_address,
            "manifest_hash": artifact.manifest_hash,
            "package": artifact.build_spec.package,
            "host_platform": artifact.build_spec.host_platform,
        }
        (self._out / f"{program}.json").write_text(
            json.dumps(metadata, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )
        logger.info("Exported %s to %s", artifact.content_address, target)
        return target
