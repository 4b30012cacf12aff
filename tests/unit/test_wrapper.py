"""Tests for the artifact wrapper boundary."""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from patchforge.core.source_store import SourceStore
from patchforge.core.wrapper import ArtifactWrapper, SidecarWrapper
from patchforge.models.build import Artifact, BuildSpec, WrapperRequest


@pytest.fixture
def artifact(store: SourceStore, tmp_path: Path) -> Artifact:
    binary = tmp_path / "codex-tui"
    binary.write_bytes(b"\x7fELF tui")
    digest, path = store.store_artifact(binary)
    return Artifact(
        name="codex-tui",
        content_address=digest,
        size_bytes=path.stat().st_size,
        path=path,
        build_spec=BuildSpec(package="codex-tui", binary="codex-tui", host_platform="linux"),
        manifest_hash="sha256:" + "9" * 64,
    )


class TestSidecarWrapper:
    def test_satisfies_protocol(self, tmp_path: Path):
        assert isinstance(SidecarWrapper(tmp_path), ArtifactWrapper)

    def test_exports_runnable_binary(self, artifact: Artifact, tmp_path: Path):
        out = tmp_path / "out"
        handle = SidecarWrapper(out).wrap(WrapperRequest(artifact=artifact))
        assert handle == out / "codex-tui"
        assert handle.read_bytes() == b"\x7fELF tui"
        assert os.access(handle, os.X_OK)

    def test_entry_point_name(self, artifact: Artifact, tmp_path: Path):
        handle = SidecarWrapper(tmp_path).wrap(
            WrapperRequest(artifact=artifact, main_program="codex")
        )
        assert handle.name == "codex"

    def test_metadata_sidecar(self, artifact: Artifact, tmp_path: Path):
        SidecarWrapper(tmp_path).wrap(WrapperRequest(
            artifact=artifact,
            description="OpenAI Codex TUI",
            license="Apache-2.0",
            platforms=("linux", "darwin"),
        ))
        meta = json.loads((tmp_path / "codex-tui.json").read_text())
        assert meta["content_address"] == artifact.content_address
        assert meta["license"] == "Apache-2.0"
        assert meta["platforms"] == ["darwin", "linux"]
        assert meta["manifest_hash"] == artifact.manifest_hash

    def test_rewrap_replaces_export(self, artifact: Artifact, tmp_path: Path):
        wrapper = SidecarWrapper(tmp_path)
        wrapper.wrap(WrapperRequest(artifact=artifact))
        handle = wrapper.wrap(WrapperRequest(artifact=artifact))
        assert handle.read_bytes() == b"\x7fELF tui"
        assert not (tmp_path / ".codex-tui.tmp").exists()
