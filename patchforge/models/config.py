"""Project declaration models — the contents of ``patchforge.toml``.

The forge file is static configuration: pins, overrides, the lock
description to cross-check and the single target to build.  It is loaded
once at pipeline start and never mutated.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from patchforge.core.errors import ConfigError
from patchforge.models.overrides import OverrideSpec
from patchforge.models.sources import PinnedSource

DEFAULT_FORGE_FILE = "patchforge.toml"


class ProjectSection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    path: Path = Path(".")
    lock_file: str = "Cargo.lock"  # relative to ``path``


class PinDeclaration(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str
    rev: str
    hash: str


class OverrideDeclaration(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    origin: str
    name: str
    pin: str
    subpath: str = ""
    version: str | None = None


class LockSection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # "<name>-<version>" -> declared digest, for dependencies the lock
    # file itself carries no checksum for (git sources).
    output_hashes: dict[str, str] = Field(default_factory=dict)


class BuildSection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    package: str
    binary: str
    platform: str = "auto"
    profile: str = "release"
    locked: bool = True
    offline: bool = False
    env: dict[str, str] = Field(default_factory=dict)


class MetaSection(BaseModel):
    """Distribution metadata passed through to the Artifact Wrapper."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str = ""
    license: str = ""
    main_program: str = ""
    homepage: str = ""
    platforms: list[str] = Field(default_factory=list)


class ForgeFile(BaseModel):
    """Parsed ``patchforge.toml``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    project: ProjectSection = ProjectSection()
    pins: dict[str, PinDeclaration] = Field(default_factory=dict)
    overrides: list[OverrideDeclaration] = Field(default_factory=list)
    lock: LockSection = LockSection()
    build: BuildSection
    meta: MetaSection = MetaSection()
    base_dir: Path = Path(".")  # directory containing the forge file

    def project_dir(self) -> Path:
        return (self.base_dir / self.project.path).resolve()

    def lock_path(self) -> Path:
        return self.project_dir() / self.project.lock_file

    def pinned_sources(self) -> dict[str, PinnedSource]:
        """Build PinnedSource values from the ``[pins]`` tables."""
        sources: dict[str, PinnedSource] = {}
        for name, decl in self.pins.items():
            try:
                sources[name] = PinnedSource(
                    url=_resolve_local_url(decl.url, self.base_dir),
                    rev=decl.rev,
                    expected_hash=decl.hash,
                    name=name,
                )
            except ValidationError as exc:
                raise ConfigError(f"Invalid pin {name!r}: {exc}") from exc
        return sources

    def override_specs(self) -> list[OverrideSpec]:
        """Resolve ``[[overrides]]`` against the declared pins."""
        sources = self.pinned_sources()
        specs: list[OverrideSpec] = []
        for decl in self.overrides:
            source = sources.get(decl.pin)
            if source is None:
                raise ConfigError(
                    f"Override {decl.name!r} references unknown pin {decl.pin!r}"
                )
            try:
                specs.append(
                    OverrideSpec(
                        target_origin=decl.origin,
                        target_name=decl.name,
                        source=source,
                        subpath=decl.subpath,
                        version=decl.version,
                    )
                )
            except ValidationError as exc:
                raise ConfigError(f"Invalid override {decl.name!r}: {exc}") from exc
        return specs


def _resolve_local_url(url: str, base_dir: Path) -> str:
    """Anchor relative local paths at the forge file's directory."""
    if "://" in url or url.startswith("git@") or Path(url).is_absolute():
        return url
    return str((base_dir / url).resolve())


def load_forge_file(path: Path) -> ForgeFile:
    """Read and validate a forge file.  Raises ConfigError on any problem."""
    path = Path(path)
    try:
        with open(path, "rb") as fh:
            raw = tomllib.load(fh)
    except FileNotFoundError as exc:
        raise ConfigError(f"Forge file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    raw["base_dir"] = path.resolve().parent
    try:
        return ForgeFile.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid forge file {path}: {exc}") from exc
