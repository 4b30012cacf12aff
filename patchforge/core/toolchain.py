"""Toolchain backends for the hermetic build driver.

Defines the ``Toolchain`` Protocol that build backends must satisfy and
the default ``CargoToolchain``.  A toolchain builds exactly one binary of
one package; it never runs the project's tests and never builds the whole
workspace.

``run_process`` owns the child process: if the caller is interrupted
while the toolchain runs, the child is terminated (then killed after a
grace period) before the interruption propagates.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from patchforge.core.errors import ToolchainError
from patchforge.models.build import BuildSpec

logger = logging.getLogger(__name__)

_PROFILE_DIRS: dict[str, str] = {"dev": "debug", "test": "debug", "bench": "release"}


@runtime_checkable
class Toolchain(Protocol):
    """Protocol for build backends."""

    def build(
        self,
        spec: BuildSpec,
        project_dir: Path,
        env: Mapping[str, str],
        target_dir: Path,
    ) -> Path:
        """Build ``spec.binary`` and return the path of the produced file.

        Raises ``ToolchainError`` on any compile or link failure.
        """
        ...


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    grace_seconds: float = 10.0,
) -> str:
    """Run *argv* to completion and return its stdout.

    Non-zero exit raises ``ToolchainError`` carrying stderr verbatim.
    On interruption the child process is terminated and reaped.
    """
    command = shlex.join(argv)
    logger.info("Invoking toolchain: %s", command)
    try:
        proc = subprocess.Popen(
            list(argv),
            cwd=str(cwd),
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except OSError as exc:
        raise ToolchainError(None, str(exc), command=command) from exc

    try:
        stdout, stderr = proc.communicate()
    except BaseException:
        logger.warning("Interrupted; terminating toolchain process %d", proc.pid)
        proc.terminate()
        try:
            proc.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()
        raise

    if proc.returncode != 0:
        raise ToolchainError(proc.returncode, stderr, command=command)
    return stdout


class CargoToolchain:
    """Build one binary of one package with ``cargo build``.

    Parameters
    ----------
    cargo_binary:
        Path or name of cargo; resolved through the hermetic ``PATH``.
    grace_seconds:
        Time allowed for cargo to exit after termination on cancellation.
    """

    def __init__(self, cargo_binary: str = "cargo", grace_seconds: float = 10.0) -> None:
        self._cargo = cargo_binary
        self._grace = grace_seconds

    def command(self, spec: BuildSpec, target_dir: Path) -> list[str]:
        argv = [self._cargo, "build"]
        if spec.locked:
            argv.append("--locked")
        if spec.offline:
            argv.append("--offline")
        argv += [
            "--profile", spec.profile,
            "--package", spec.package,
            "--bin", spec.binary,
            "--target-dir", str(target_dir),
        ]
        return argv

    def build(
        self,
        spec: BuildSpec,
        project_dir: Path,
        env: Mapping[str, str],
        target_dir: Path,
    ) -> Path:
        run_process(
            self.command(spec, target_dir),
            cwd=project_dir,
            env=env,
            grace_seconds=self._grace,
        )
        binary = target_dir / _PROFILE_DIRS.get(spec.profile, spec.profile) / spec.binary
        if not binary.is_file():
            raise ToolchainError(
                0, f"cargo reported success but {binary} was not produced"
            )
        return binary
