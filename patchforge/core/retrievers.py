"""Source retrieval backends for the content-addressed fetcher.

A retriever materializes the content of a (url, rev) pair into an empty
staging directory.  It does not hash or verify anything: the fetcher
computes the digest over whatever the retriever produced.

Backends:
1. **GitRetriever** — remote git repositories (https, ssh, git URLs).
2. **LocalRetriever** — ``file://`` URLs and plain directories.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import urlparse

from patchforge.core.errors import FetchError
from patchforge.models.sources import PinnedSource

logger = logging.getLogger(__name__)


@runtime_checkable
class SourceRetriever(Protocol):
    """Protocol for retrieval backends."""

    def retrieve(self, source: PinnedSource, dest: Path) -> None:
        """Write the content of *source* into the empty directory *dest*.

        Raises ``FetchError`` on any retrieval failure.
        """
        ...


class GitRetriever:
    """Shallow-fetch a single revision of a git repository.

    Parameters
    ----------
    git_binary:
        Name or path of the git executable.
    timeout:
        Seconds allowed for each git command.
    """

    def __init__(self, git_binary: str = "git", timeout: float = 600.0) -> None:
        self._git = git_binary
        self._timeout = timeout

    def retrieve(self, source: PinnedSource, dest: Path) -> None:
        if shutil.which(self._git) is None:
            raise FetchError(source, f"git executable {self._git!r} not found")

        self._run(source, ["init", "--quiet", str(dest)])
        self._run(source, ["-C", str(dest), "fetch", "--quiet", "--depth", "1",
                           source.url, source.rev])
        self._run(source, ["-C", str(dest), "checkout", "--quiet", "--detach",
                           "FETCH_HEAD"])
        shutil.rmtree(dest / ".git", ignore_errors=True)

    def _run(self, source: PinnedSource, args: list[str]) -> None:
        cmd = [self._git, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except subprocess.TimeoutExpired as exc:
            raise FetchError(source, f"{' '.join(cmd)} timed out") from exc
        except OSError as exc:
            raise FetchError(source, str(exc)) from exc
        if result.returncode != 0:
            raise FetchError(source, result.stderr.strip() or f"git exited {result.returncode}")


class LocalRetriever:
    """Copy a source tree from the local filesystem.

    The ``rev`` of a local source is informational only; the tree digest
    is what pins its content.
    """

    def retrieve(self, source: PinnedSource, dest: Path) -> None:
        path = local_path(source.url)
        if not path.is_dir():
            raise FetchError(source, f"{path} is not a directory")
        try:
            shutil.copytree(path, dest, symlinks=True, dirs_exist_ok=True,
                            ignore=shutil.ignore_patterns(".git"))
        except (OSError, shutil.Error) as exc:
            raise FetchError(source, str(exc)) from exc


def local_path(url: str) -> Path:
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(parsed.path)
    return Path(url)


def is_local(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme == "file" or (not parsed.scheme and not url.startswith("git@"))


def select_retriever(
    source: PinnedSource,
    *,
    git: SourceRetriever | None = None,
    local: SourceRetriever | None = None,
) -> SourceRetriever:
    """Pick a backend by URL scheme."""
    if is_local(source.url):
        return local or LocalRetriever()
    return git or GitRetriever()
