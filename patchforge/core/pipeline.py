"""Pipeline orchestrator — the central coordinator for patchforge runs.

Wires the Fetcher, ManifestBuilder, LockCrossChecker, HermeticBuildDriver
and ArtifactWrapper into one fail-closed sequence:

    fetch -> verify_lock (gate) -> build -> wrap

Every stage runs through the same lifecycle: compute an input hash,
record ``running`` in the ledger, execute, then record ``passed`` with an
output hash, or ``failed`` with the cause before re-raising.  No stage
starts until every previous stage has passed, so the toolchain is never
invoked past a potential abort point.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict

from patchforge.config import ForgeConfig
from patchforge.core.build_driver import HermeticBuildDriver
from patchforge.core.errors import ConfigError
from patchforge.core.fetcher import Fetcher
from patchforge.core.hasher import compute_input_hash, compute_output_hash
from patchforge.core.lock_checker import LockCrossChecker
from patchforge.core.lockfile import load_lock
from patchforge.core.manifest_builder import ManifestBuilder
from patchforge.core.platforms import normalize_platform
from patchforge.core.retrievers import GitRetriever, SourceRetriever
from patchforge.core.run_ledger import RunLedger
from patchforge.core.source_store import SourceStore
from patchforge.core.toolchain import CargoToolchain, Toolchain
from patchforge.core.wrapper import ArtifactWrapper
from patchforge.models.build import Artifact, BuildSpec, WrapperRequest
from patchforge.models.config import ForgeFile
from patchforge.models.ledger import LedgerEntry
from patchforge.models.lock import LockEntry, MismatchReport
from patchforge.models.overrides import OverrideManifest

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGES: tuple[str, ...] = ("fetch", "verify_lock", "build", "wrap")


class PipelineResult(BaseModel):
    """Outputs of one pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    manifest: OverrideManifest
    report: MismatchReport
    artifact: Artifact | None = None
    wrapped_path: Path | None = None


class Pipeline:
    """Runs the override-and-build pipeline for one forge file.

    Parameters
    ----------
    forge:
        Parsed ``patchforge.toml``.
    config:
        Runtime settings.  Uses environment defaults if not provided.
    retriever:
        Source retrieval backend for every pin (tests use a local one).
    toolchain:
        Build backend.  Defaults to ``CargoToolchain``.
    wrapper:
        Artifact Wrapper.  When None the wrap stage is skipped.
    ledger:
        Run ledger.  Defaults to one at ``config.ledger_path``.
    """

    def __init__(
        self,
        forge: ForgeFile,
        *,
        config: ForgeConfig | None = None,
        retriever: SourceRetriever | None = None,
        toolchain: Toolchain | None = None,
        wrapper: ArtifactWrapper | None = None,
        ledger: RunLedger | None = None,
        run_id: str | None = None,
    ) -> None:
        self.forge = forge
        self.config = config or ForgeConfig()
        self.store = SourceStore(self.config.store_path)
        self.fetcher = Fetcher(
            self.store,
            retriever=retriever,
            git_retriever=GitRetriever(
                self.config.git_binary, timeout=self.config.fetch_timeout_seconds
            ),
            max_workers=self.config.max_fetch_workers,
            verify_on_hit=self.config.verify_on_hit,
        )
        self.builder = ManifestBuilder(self.fetcher)
        self.checker = LockCrossChecker()
        self.driver = HermeticBuildDriver(
            forge.project_dir(),
            self.store,
            toolchain=toolchain or CargoToolchain(
                self.config.cargo_binary, grace_seconds=self.config.terminate_grace_seconds
            ),
            toolchain_paths=self.config.toolchain_paths,
            library_prefixes=self.config.library_prefixes,
            keep_env=self.config.keep_build_env,
        )
        self._default_toolchain = toolchain is None
        self.wrapper = wrapper
        self.ledger = ledger or RunLedger(self.config.ledger_path)

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"pf-{ts}-{uuid.uuid4().hex[:6]}"

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def build_spec(self, platform: str | None = None) -> BuildSpec:
        """BuildSpec for the forge file's target on *platform* (or its own)."""
        section = self.forge.build
        return BuildSpec(
            package=section.package,
            binary=section.binary,
            host_platform=normalize_platform(platform or section.platform),
            profile=section.profile,
            locked=section.locked,
            offline=section.offline,
            extra_env=section.env,
        )

    def check_toolchain(self) -> None:
        """Reject a default cargo that the hermetic ``PATH`` cannot resolve."""
        if not self._default_toolchain or self.config.toolchain_paths:
            return
        if not Path(self.config.cargo_binary).is_absolute():
            raise ConfigError(
                f"cargo binary {self.config.cargo_binary!r} is not an absolute path and "
                "the hermetic PATH is empty; set PATCHFORGE_TOOLCHAIN_PATHS or "
                "PATCHFORGE_CARGO_BINARY"
            )

    def lock_entries(self) -> list[LockEntry]:
        return load_lock(self.forge.lock_path(), self.forge.lock.output_hashes)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def plan(self) -> PipelineResult:
        """Fetch, build the manifest and pass the lock gate; do not build."""
        manifest = self._fetch_stage()
        report = self._verify_stage(manifest)
        return PipelineResult(run_id=self.run_id, manifest=manifest, report=report)

    def run(self, platform: str | None = None) -> PipelineResult:
        """Execute every stage.  Any failure halts the run and propagates."""
        self.check_toolchain()
        spec = self.build_spec(platform)
        manifest = self._fetch_stage()
        report = self._verify_stage(manifest)
        artifact = self._build_stage(spec, manifest)
        wrapped = self._wrap_stage(artifact)
        return PipelineResult(
            run_id=self.run_id,
            manifest=manifest,
            report=report,
            artifact=artifact,
            wrapped_path=wrapped,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _fetch_stage(self) -> OverrideManifest:
        specs = self.forge.override_specs()
        inputs = {"overrides": [s.model_dump(mode="json") for s in specs]}
        return self._run_stage(
            "fetch", inputs, lambda: self.builder.build(specs),
            outputs=lambda m: {"manifest_hash": m.content_hash()},
        )

    def _verify_stage(self, manifest: OverrideManifest) -> MismatchReport:
        inputs = {
            "manifest_hash": manifest.content_hash(),
            "lock_file": str(self.forge.lock_path()),
        }
        return self._run_stage(
            "verify_lock", inputs,
            lambda: self.checker.enforce(manifest, self.lock_entries()),
            outputs=lambda r: r.model_dump(mode="json"),
        )

    def _build_stage(self, spec: BuildSpec, manifest: OverrideManifest) -> Artifact:
        inputs = {"build_spec": spec.spec_hash(), "manifest_hash": manifest.content_hash()}
        return self._run_stage(
            "build", inputs, lambda: self.driver.build(spec, manifest),
            outputs=lambda a: {"content_address": a.content_address},
            artifacts=lambda a: [a.content_address],
        )

    def _wrap_stage(self, artifact: Artifact) -> Path | None:
        if self.wrapper is None:
            logger.info("No artifact wrapper configured; skipping wrap stage")
            return None
        meta = self.forge.meta
        request = WrapperRequest(
            artifact=artifact,
            description=meta.description,
            license=meta.license,
            main_program=meta.main_program or artifact.name,
            homepage=meta.homepage,
            platforms=tuple(meta.platforms) or (artifact.build_spec.host_platform,),
        )
        wrapper = self.wrapper
        return self._run_stage(
            "wrap", {"content_address": artifact.content_address},
            lambda: wrapper.wrap(request),
            outputs=lambda p: {"path": str(p)},
        )

    def _run_stage(
        self,
        stage_id: str,
        inputs: dict[str, Any],
        execute: Callable[[], T],
        *,
        outputs: Callable[[T], dict[str, Any]],
        artifacts: Callable[[T], list[str]] | None = None,
    ) -> T:
        input_hash = compute_input_hash(stage_id, inputs)
        logger.info("[%s] %s input_hash=%s", self.run_id, stage_id, input_hash)
        self._record(stage_id, "not_started->running", input_hash=input_hash)

        try:
            result = execute()
        except BaseException as exc:
            logger.error("[%s] %s failed: %s", self.run_id, stage_id, exc)
            self._record(
                stage_id, "running->failed",
                input_hash=input_hash,
                detail=f"{type(exc).__name__}: {exc}",
            )
            raise

        output_hash = compute_output_hash(stage_id, outputs(result))
        logger.info("[%s] %s output_hash=%s", self.run_id, stage_id, output_hash)
        self._record(
            stage_id, "running->passed",
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifacts(result) if artifacts else [],
        )
        return result

    def _record(self, stage_id: str, transition: str, **fields: Any) -> LedgerEntry:
        return self.ledger.append(
            LedgerEntry(
                run_id=self.run_id,
                stage_id=stage_id,
                state_transition=transition,
                **fields,
            )
        )
