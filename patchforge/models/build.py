"""Build request and artifact models."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from patchforge.core.hasher import content_address


class BuildSpec(BaseModel):
    """Fully determines one toolchain invocation.

    Nothing outside this model (and the override manifest) may influence
    the build: the driver never reads the ambient environment.
    """

    model_config = ConfigDict(frozen=True)

    package: str
    binary: str
    host_platform: str
    native_libraries: tuple[str, ...] = ()
    profile: str = "release"
    locked: bool = True
    offline: bool = False
    extra_env: dict[str, str] = Field(default_factory=dict)

    @field_validator("package", "binary", "host_platform")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("native_libraries")
    @classmethod
    def _sorted_libraries(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(sorted(set(value)))

    def spec_hash(self) -> str:
        return content_address(self.model_dump(mode="json"))


class Artifact(BaseModel):
    """The build's sole output — one named binary in the artifact store."""

    model_config = ConfigDict(frozen=True)

    name: str
    content_address: str  # "sha256:<hex>" of the binary bytes
    size_bytes: int
    path: Path
    build_spec: BuildSpec
    manifest_hash: str


class WrapperRequest(BaseModel):
    """Everything the Artifact Wrapper receives for one artifact."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    description: str = ""
    license: str = ""
    main_program: str = ""
    platforms: tuple[str, ...] = ()
    homepage: str = ""
