"""Tests for the hermetic build driver."""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from pathlib import Path

import pytest

from patchforge.core.build_driver import HERMETIC_BASE_ENV, HermeticBuildDriver
from patchforge.core.cargo_config import render_cargo_config
from patchforge.core.errors import ExitCode, ToolchainError
from patchforge.core.fetcher import Fetcher
from patchforge.core.manifest_builder import ManifestBuilder
from patchforge.core.source_store import SourceStore
from patchforge.core.toolchain import CargoToolchain
from patchforge.models.build import BuildSpec
from patchforge.models.overrides import OverrideManifest, OverrideSpec
from patchforge.models.sources import PinnedSource


class FailingToolchain:
    def __init__(self) -> None:
        self.roots: list[Path] = []

    def build(self, spec: BuildSpec, project_dir: Path, env: Mapping[str, str],
              target_dir: Path) -> Path:
        self.roots.append(target_dir.parent)
        raise ToolchainError(101, "error[E0425]: cannot find value `x` in this scope\n")


class InterruptedToolchain:
    def build(self, spec: BuildSpec, project_dir: Path, env: Mapping[str, str],
              target_dir: Path) -> Path:
        (target_dir / "partial.o").write_bytes(b"half")
        raise KeyboardInterrupt


class RecordingCargo(CargoToolchain):
    """Cargo backend that records argv and env instead of running cargo."""

    def __init__(self) -> None:
        super().__init__("cargo")
        self.calls: list[tuple[list[str], dict[str, str]]] = []

    def build(self, spec: BuildSpec, project_dir: Path, env: Mapping[str, str],
              target_dir: Path) -> Path:
        self.calls.append((self.command(spec, target_dir), dict(env)))
        out = target_dir / "release" / spec.binary
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(b"\x7fELF")
        return out


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "project"
    project.mkdir()
    (project / "Cargo.lock").write_text("version = 4\n")
    return project


@pytest.fixture
def spec() -> BuildSpec:
    return BuildSpec(package="app", binary="app", host_platform="linux")


@pytest.fixture
def manifest(fetcher: Fetcher, libx_pin: PinnedSource) -> OverrideManifest:
    return ManifestBuilder(fetcher).build([
        OverrideSpec(
            target_origin="https://github.com/upstream/libX",
            target_name="libX",
            source=libx_pin,
        )
    ])


@pytest.fixture
def driver(project_dir: Path, store: SourceStore, fake_toolchain) -> HermeticBuildDriver:
    return HermeticBuildDriver(
        project_dir,
        store,
        toolchain=fake_toolchain,
        toolchain_paths=[Path("/opt/rust/bin"), Path("/usr/bin")],
        library_prefixes={"zlib": Path("/opt/zlib")},
    )


class TestBuildEnv:
    def test_ambient_environment_not_inherited(
        self, driver: HermeticBuildDriver, spec: BuildSpec, tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ):
        monkeypatch.setenv("LEAKY_TOKEN", "secret")
        monkeypatch.setenv("CARGO_HOME", "/home/user/.cargo")
        env = driver.build_env(spec, tmp_path / "root")
        assert "LEAKY_TOKEN" not in env
        assert env["CARGO_HOME"] == str(tmp_path / "root" / "cargo-home")

    def test_fixed_base_variables(self, driver: HermeticBuildDriver, spec: BuildSpec,
                                  tmp_path: Path):
        env = driver.build_env(spec, tmp_path)
        for key, value in HERMETIC_BASE_ENV.items():
            assert env[key] == value

    def test_path_is_toolchain_paths(self, driver: HermeticBuildDriver, spec: BuildSpec,
                                     tmp_path: Path):
        assert driver.build_env(spec, tmp_path)["PATH"] == "/opt/rust/bin:/usr/bin"

    def test_native_libraries_from_platform_table(
        self, driver: HermeticBuildDriver, spec: BuildSpec, tmp_path: Path
    ):
        env = driver.build_env(spec, tmp_path)
        assert env["PATCHFORGE_NATIVE_LIBS"] == "curl,libgit2,openssl,zlib"
        assert env["LIBRARY_PATH"] == "/opt/zlib/lib"

    def test_spec_libraries_added(self, driver: HermeticBuildDriver, tmp_path: Path):
        spec = BuildSpec(package="app", binary="app", host_platform="linux",
                         native_libraries=("sqlite",))
        assert "sqlite" in driver.resolve_libraries(spec)

    def test_remaps_private_root(self, driver: HermeticBuildDriver, spec: BuildSpec,
                                 tmp_path: Path):
        env = driver.build_env(spec, tmp_path)
        assert f"--remap-path-prefix={tmp_path}=/build" in env["RUSTFLAGS"]

    def test_extra_env_applied_last(self, driver: HermeticBuildDriver, tmp_path: Path):
        spec = BuildSpec(package="app", binary="app", host_platform="linux",
                         extra_env={"TZ": "Europe/Oslo", "RUST_LOG": "info"})
        env = driver.build_env(spec, tmp_path)
        assert env["TZ"] == "Europe/Oslo"
        assert env["RUST_LOG"] == "info"

    def test_env_is_deterministic(self, driver: HermeticBuildDriver, spec: BuildSpec,
                                  tmp_path: Path):
        assert driver.build_env(spec, tmp_path) == driver.build_env(spec, tmp_path)


class TestBuildRoot:
    def test_root_is_under_store(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest,
        store: SourceStore,
    ):
        root = driver.build_root(spec, manifest)
        assert root.parent == store.root / "builds"
        assert root == driver.build_root(spec, manifest)

    def test_root_depends_on_inputs(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest,
    ):
        other = BuildSpec(package="app", binary="app", host_platform="linux", profile="dev")
        assert driver.build_root(spec, manifest) != driver.build_root(other, manifest)
        assert driver.build_root(spec, manifest) != driver.build_root(spec, OverrideManifest())

    def test_repeated_builds_give_toolchain_identical_inputs(
        self, project_dir: Path, store: SourceStore, spec: BuildSpec,
        manifest: OverrideManifest,
    ):
        cargo = RecordingCargo()
        driver = HermeticBuildDriver(project_dir, store, toolchain=cargo,
                                     toolchain_paths=[Path("/usr/bin")])
        driver.build(spec, manifest)
        driver.build(spec, manifest)
        (first_argv, first_env), (second_argv, second_env) = cargo.calls
        assert first_argv == second_argv
        assert first_env == second_env

    def test_fresh_driver_same_inputs(
        self, project_dir: Path, store: SourceStore, spec: BuildSpec,
        manifest: OverrideManifest,
    ):
        cargo = RecordingCargo()
        for _ in range(2):
            HermeticBuildDriver(project_dir, store, toolchain=cargo).build(spec, manifest)
        assert cargo.calls[0] == cargo.calls[1]

    def test_leftovers_wiped_before_build(
        self, project_dir: Path, store: SourceStore, fake_toolchain, spec: BuildSpec,
        manifest: OverrideManifest,
    ):
        driver = HermeticBuildDriver(project_dir, store, toolchain=fake_toolchain,
                                     keep_env=True)
        root = driver.build_root(spec, manifest)
        (root / "target").mkdir(parents=True)
        (root / "target" / "stale.o").write_bytes(b"old")
        driver.build(spec, manifest)
        assert not (root / "target" / "stale.o").exists()
        assert (root / "cargo-home" / "config.toml").exists()
        shutil.rmtree(root)

    def test_interrupted_build_removes_root(
        self, project_dir: Path, store: SourceStore, spec: BuildSpec,
        manifest: OverrideManifest, fake_toolchain,
    ):
        driver = HermeticBuildDriver(project_dir, store, toolchain=InterruptedToolchain())
        with pytest.raises(KeyboardInterrupt):
            driver.build(spec, manifest)
        assert not driver.build_root(spec, manifest).exists()
        assert list((store.root / "artifacts").rglob("*.bin")) == []
        # The lock was released: the next build proceeds.
        HermeticBuildDriver(project_dir, store, toolchain=fake_toolchain).build(spec, manifest)


class TestBuild:
    def test_produces_stored_artifact(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest,
        store: SourceStore,
    ):
        artifact = driver.build(spec, manifest)
        assert artifact.name == "app"
        assert artifact.content_address.startswith("sha256:")
        assert artifact.path == store.artifact_path(artifact.content_address)
        assert artifact.size_bytes == artifact.path.stat().st_size
        assert artifact.manifest_hash == manifest.content_hash()
        assert artifact.build_spec == spec

    def test_toolchain_sees_rendered_manifest(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest,
        fake_toolchain, project_dir: Path,
    ):
        driver.build(spec, manifest)
        invocation = fake_toolchain.invocations[0]
        assert invocation["config"] == render_cargo_config(manifest)
        assert invocation["project_dir"] == project_dir

    def test_private_environment_removed(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest,
        fake_toolchain,
    ):
        driver.build(spec, manifest)
        root = Path(fake_toolchain.invocations[0]["env"]["HOME"]).parent
        assert not root.exists()

    def test_keep_env(
        self, project_dir: Path, store: SourceStore, fake_toolchain, spec: BuildSpec,
        manifest: OverrideManifest,
    ):
        driver = HermeticBuildDriver(project_dir, store, toolchain=fake_toolchain,
                                     keep_env=True)
        driver.build(spec, manifest)
        root = Path(fake_toolchain.invocations[0]["env"]["HOME"]).parent
        assert (root / "cargo-home" / "config.toml").exists()
        shutil.rmtree(root)

    def test_identical_inputs_identical_artifact(
        self, driver: HermeticBuildDriver, spec: BuildSpec, manifest: OverrideManifest
    ):
        first = driver.build(spec, manifest)
        second = driver.build(spec, manifest)
        assert first.content_address == second.content_address

    def test_toolchain_failure_propagates_and_cleans_up(
        self, project_dir: Path, store: SourceStore, spec: BuildSpec,
        manifest: OverrideManifest,
    ):
        failing = FailingToolchain()
        driver = HermeticBuildDriver(project_dir, store, toolchain=failing)
        with pytest.raises(ToolchainError) as exc_info:
            driver.build(spec, manifest)
        assert exc_info.value.exit_code == ExitCode.TOOLCHAIN
        assert "E0425" in exc_info.value.diagnostic
        assert not failing.roots[0].exists()
        assert list((store.root / "artifacts").rglob("*.bin")) == []

    def test_missing_project_dir(self, store: SourceStore, fake_toolchain, spec: BuildSpec,
                                 tmp_path: Path):
        driver = HermeticBuildDriver(tmp_path / "absent", store, toolchain=fake_toolchain)
        with pytest.raises(ToolchainError, match="does not exist"):
            driver.build(spec, OverrideManifest())
        assert fake_toolchain.invocations == []
