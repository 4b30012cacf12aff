"""Shared test fixtures for patchforge."""

from __future__ import annotations

import json
import textwrap
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from patchforge.config import ForgeConfig
from patchforge.core.fetcher import Fetcher
from patchforge.core.hasher import sha256_hex, tree_digest
from patchforge.core.retrievers import LocalRetriever
from patchforge.core.run_ledger import RunLedger
from patchforge.core.source_store import SourceStore
from patchforge.models.build import BuildSpec
from patchforge.models.sources import PinnedSource


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class CountingRetriever:
    """LocalRetriever that records every retrieval it performs."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self._inner = LocalRetriever()

    def retrieve(self, source: PinnedSource, dest: Path) -> None:
        self.calls.append(source.identity)
        self._inner.retrieve(source, dest)


class FakeToolchain:
    """Toolchain that 'builds' a binary derived only from its inputs.

    The produced bytes depend on the rendered override config and the
    build spec, so identical inputs give identical artifacts.
    """

    def __init__(self) -> None:
        self.invocations: list[dict[str, object]] = []

    def build(
        self,
        spec: BuildSpec,
        project_dir: Path,
        env: Mapping[str, str],
        target_dir: Path,
    ) -> Path:
        config_text = (Path(env["CARGO_HOME"]) / "config.toml").read_text(encoding="utf-8")
        self.invocations.append({
            "spec": spec,
            "project_dir": project_dir,
            "env": dict(env),
            "config": config_text,
        })
        out = target_dir / "release" / spec.binary
        out.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(
            {"config": config_text, "spec": spec.model_dump(mode="json")}, sort_keys=True
        )
        out.write_bytes(b"\x7fELF" + sha256_hex(payload.encode()).encode())
        return out


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def store(tmp_dir: Path) -> SourceStore:
    """Provide a fresh SourceStore in a temp directory."""
    return SourceStore(tmp_dir / "store")


@pytest.fixture
def retriever() -> CountingRetriever:
    return CountingRetriever()


@pytest.fixture
def fetcher(store: SourceStore, retriever: CountingRetriever) -> Fetcher:
    """Provide a Fetcher over the test store using local retrieval."""
    return Fetcher(store, retriever=retriever, max_workers=4)


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "ledger.db")


@pytest.fixture
def fake_toolchain() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def settings(tmp_dir: Path) -> ForgeConfig:
    """Runtime settings pointing every path into the temp directory."""
    return ForgeConfig(
        store_path=tmp_dir / "store",
        ledger_path=tmp_dir / "ledger.db",
        toolchain_paths=[Path("/usr/bin")],
    )


@pytest.fixture
def make_source_tree(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write a source tree from a {relpath: content} mapping."""

    def _factory(name: str, files: Mapping[str, str]) -> Path:
        root = tmp_dir / "sources" / name
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        return root

    return _factory


@pytest.fixture
def make_pin(make_source_tree: Callable[..., Path]) -> Callable[..., PinnedSource]:
    """Factory fixture: create a local source tree and a pin matching it."""

    def _factory(
        name: str,
        files: Mapping[str, str] | None = None,
        *,
        rev: str = "abc123",
        expected_hash: str | None = None,
    ) -> PinnedSource:
        root = make_source_tree(name, files or {"Cargo.toml": f'[package]\nname = "{name}"\n'})
        return PinnedSource(
            url=str(root),
            rev=rev,
            expected_hash=expected_hash or tree_digest(root),
            name=name,
        )

    return _factory


@pytest.fixture
def libx_pin(make_pin: Callable[..., PinnedSource]) -> PinnedSource:
    """The forked libX tree from the reference scenario."""
    return make_pin(
        "libX",
        {
            "Cargo.toml": '[package]\nname = "libX"\nversion = "1.2.0"\n',
            "src/lib.rs": "pub fn patched() -> bool { true }\n",
        },
    )


def write_cargo_lock(path: Path, packages: list[dict[str, str]]) -> Path:
    """Write a minimal Cargo.lock with the given [[package]] tables."""
    chunks = ["# This file is automatically @generated by Cargo.", "version = 4", ""]
    for package in packages:
        chunks.append("[[package]]")
        for key, value in package.items():
            chunks.append(f'{key} = "{value}"')
        chunks.append("")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(chunks), encoding="utf-8")
    return path


@pytest.fixture
def forge_project(tmp_dir: Path, libx_pin: PinnedSource) -> Callable[..., Path]:
    """Factory fixture: lay out a project with Cargo.lock and patchforge.toml.

    Returns the path of the forge file.  ``declared_hash`` defaults to the
    libX pin's digest, which makes the lock consistent with the override.
    """

    def _factory(declared_hash: str | None = None, extra: str = "") -> Path:
        project = tmp_dir / "project"
        (project / "src").mkdir(parents=True, exist_ok=True)
        (project / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
        write_cargo_lock(
            project / "Cargo.lock",
            [
                {"name": "app", "version": "0.1.0"},
                {
                    "name": "libX",
                    "version": "1.2.0",
                    "source": "git+https://github.com/upstream/libX?rev=v1.2.0#0123abcd",
                },
            ],
        )
        declared = declared_hash or libx_pin.expected_hash
        forge = tmp_dir / "patchforge.toml"
        forge.write_text(
            textwrap.dedent(
                f"""\
                [project]
                path = "project"

                [pins.libX]
                url = "{libx_pin.url}"
                rev = "{libx_pin.rev}"
                hash = "{libx_pin.expected_hash}"

                [[overrides]]
                origin = "https://github.com/upstream/libX"
                name = "libX"
                pin = "libX"

                [lock.output_hashes]
                "libX-1.2.0" = "{declared}"

                [build]
                package = "app"
                binary = "app"
                platform = "linux"

                [meta]
                description = "App built against the patched libX"
                license = "Apache-2.0"
                main_program = "app"
                platforms = ["linux", "darwin"]
                """
            )
            + extra,
            encoding="utf-8",
        )
        return forge

    return _factory
