"""Hermetic build driver.

Builds one named binary inside a private environment under the store:

    {store}/builds/{key}/
        cargo-home/config.toml   rendered override manifest, nothing else
        home/                    private HOME
        tmp/                     private TMPDIR
        target/                  build output

``key`` is derived from the BuildSpec and the OverrideManifest, so the
same inputs always build under the same paths and the toolchain sees
identical env and arguments on every run.  The child environment is
assembled from scratch and never inherits ``os.environ``.  Builds sharing
a key are serialised with an exclusive file lock; the root is wiped
before the build starts and removed when it ends, successfully or not.
"""

from __future__ import annotations

import fcntl
import logging
import os
import shutil
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path

from patchforge.core.cargo_config import render_cargo_config
from patchforge.core.errors import ToolchainError
from patchforge.core.hasher import content_address, strip_prefix
from patchforge.core.platforms import library_search_env, native_libraries
from patchforge.core.source_store import SourceStore
from patchforge.core.toolchain import CargoToolchain, Toolchain
from patchforge.models.build import Artifact, BuildSpec
from patchforge.models.overrides import OverrideManifest

logger = logging.getLogger(__name__)

# Fixed variables present in every hermetic build environment.
HERMETIC_BASE_ENV: Mapping[str, str] = {
    "LANG": "C",
    "LC_ALL": "C",
    "TZ": "UTC",
    "SOURCE_DATE_EPOCH": "0",
    "CARGO_INCREMENTAL": "0",
    "CARGO_TERM_COLOR": "never",
}


@contextmanager
def _exclusive(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on *lock_path* for the block."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with lock_path.open("a+", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class HermeticBuildDriver:
    """Invokes a toolchain in an isolated working environment.

    Parameters
    ----------
    project_dir:
        Root of the project to build (the directory holding Cargo.lock).
    store:
        Store that receives the produced binary.
    toolchain:
        Build backend.  Defaults to ``CargoToolchain``.
    toolchain_paths:
        Directories forming the hermetic ``PATH``.
    library_prefixes:
        Install prefixes of native libraries, by library name.
    """

    def __init__(
        self,
        project_dir: Path,
        store: SourceStore,
        *,
        toolchain: Toolchain | None = None,
        toolchain_paths: list[Path] | None = None,
        library_prefixes: Mapping[str, Path] | None = None,
        keep_env: bool = False,
    ) -> None:
        self._project_dir = Path(project_dir)
        self._store = store
        self._toolchain = toolchain or CargoToolchain()
        self._toolchain_paths = [Path(p) for p in (toolchain_paths or [])]
        self._library_prefixes = dict(library_prefixes or {})
        self._keep_env = keep_env

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def resolve_libraries(self, spec: BuildSpec) -> tuple[str, ...]:
        """Platform table libraries plus any the build asks for explicitly."""
        required = native_libraries(spec.host_platform) | set(spec.native_libraries)
        missing = sorted(lib for lib in required if lib not in self._library_prefixes)
        if missing:
            logger.debug("No configured prefix for %s; relying on sysroot", ", ".join(missing))
        return tuple(sorted(required))

    def build_env(self, spec: BuildSpec, root: Path) -> dict[str, str]:
        """Assemble the complete child environment for one build."""
        env: dict[str, str] = dict(HERMETIC_BASE_ENV)
        env.update({
            "HOME": str(root / "home"),
            "CARGO_HOME": str(root / "cargo-home"),
            "CARGO_TARGET_DIR": str(root / "target"),
            "TMPDIR": str(root / "tmp"),
            "PATH": os.pathsep.join(str(p) for p in self._toolchain_paths),
        })
        libraries = self.resolve_libraries(spec)
        env["PATCHFORGE_NATIVE_LIBS"] = ",".join(libraries)
        env.update(library_search_env(libraries, self._library_prefixes))
        # Keep private paths out of the produced binary.
        remap = f"--remap-path-prefix={root}=/build"
        env["RUSTFLAGS"] = f"{env['RUSTFLAGS']} {remap}" if "RUSTFLAGS" in env else remap
        env.update(spec.extra_env)
        return env

    def prepare(self, spec: BuildSpec, manifest: OverrideManifest, root: Path) -> dict[str, str]:
        """Lay out the private environment under *root*; return its env vars."""
        for sub in ("cargo-home", "home", "tmp", "target"):
            (root / sub).mkdir(parents=True, exist_ok=True)
        config_path = root / "cargo-home" / "config.toml"
        config_path.write_text(render_cargo_config(manifest), encoding="utf-8")
        logger.debug("Wrote override config to %s", config_path)
        return self.build_env(spec, root)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build_root(self, spec: BuildSpec, manifest: OverrideManifest) -> Path:
        """Private root for this (project, BuildSpec, OverrideManifest)."""
        key = content_address({
            "project": str(self._project_dir.resolve()),
            "build_spec": spec.spec_hash(),
            "manifest": manifest.content_hash(),
        })
        return self._store.build_dir(strip_prefix(key)[:24])

    def build(self, spec: BuildSpec, manifest: OverrideManifest) -> Artifact:
        """Build ``spec.binary`` with *manifest* applied; return the Artifact.

        Raises ``ToolchainError`` on failure.  Never retried.
        """
        if not self._project_dir.is_dir():
            raise ToolchainError(None, f"project directory {self._project_dir} does not exist")

        root = self.build_root(spec, manifest)
        with _exclusive(root.with_name(f"{root.name}.lock")):
            # Leftovers from an interrupted or kept build must not leak in.
            shutil.rmtree(root, ignore_errors=True)
            logger.info(
                "Building %s/%s for %s in %s",
                spec.package, spec.binary, spec.host_platform, root,
            )
            try:
                env = self.prepare(spec, manifest, root)
                produced = self._toolchain.build(spec, self._project_dir, env, root / "target")
                digest, stored = self._store.store_artifact(produced)
            finally:
                if self._keep_env:
                    logger.info("Keeping build environment at %s", root)
                else:
                    shutil.rmtree(root, ignore_errors=True)

        artifact = Artifact(
            name=spec.binary,
            content_address=digest,
            size_bytes=stored.stat().st_size,
            path=stored,
            build_spec=spec,
            manifest_hash=manifest.content_hash(),
        )
        logger.info("Built %s -> %s", spec.binary, digest)
        return artifact
