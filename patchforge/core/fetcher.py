"""Content-addressed fetcher — materializes pinned sources as verified trees.

``fetch(source)`` retrieves the content identified by (url, rev), hashes
the retrieved tree and compares the digest with the pin.  A tree whose
digest disagrees is deleted and never exposed or cached.

Fetches are coalesced per identity: while one thread is fetching a
(url, rev), other callers for the same identity wait on the same future
instead of starting a second download.  Independent identities are
fetched in parallel by ``fetch_all``.
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from patchforge.core.errors import FetchError, IntegrityError
from patchforge.core.hasher import tree_digest
from patchforge.core.retrievers import SourceRetriever, select_retriever
from patchforge.core.source_store import SourceStore
from patchforge.models.sources import FetchedTree, PinnedSource

logger = logging.getLogger(__name__)


class Fetcher:
    """Fetch and verify pinned sources through a shared SourceStore.

    Parameters
    ----------
    store:
        Content-addressed store shared across runs.
    retriever:
        Backend used for every source.  When None, a backend is chosen
        per source from its URL scheme.
    max_workers:
        Parallelism for ``fetch_all``.
    verify_on_hit:
        Re-hash a stored tree before returning it from the cache.
    """

    def __init__(
        self,
        store: SourceStore,
        *,
        retriever: SourceRetriever | None = None,
        git_retriever: SourceRetriever | None = None,
        max_workers: int = 4,
        verify_on_hit: bool = True,
    ) -> None:
        self._store = store
        self._retriever = retriever
        self._git_retriever = git_retriever
        self._max_workers = max(1, max_workers)
        self._verify_on_hit = verify_on_hit
        self._lock = threading.Lock()
        self._inflight: dict[tuple[str, str], Future[FetchedTree]] = {}

    @property
    def store(self) -> SourceStore:
        return self._store

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def fetch(self, source: PinnedSource) -> FetchedTree:
        """Return a verified tree for *source*.

        Raises ``IntegrityError`` when content does not hash to the pin
        and ``FetchError`` when retrieval fails.
        """
        with self._lock:
            pending = self._inflight.get(source.identity)
            owner = pending is None
            if owner:
                pending = Future()
                self._inflight[source.identity] = pending

        if not owner:
            logger.debug("Waiting on in-flight fetch of %s", source.display_name())
            return self._await(pending, source)

        # The in-flight entry is dropped before waiters wake, so a waiter
        # that refetches starts a new fetch rather than rejoining this one.
        try:
            tree = self._fetch_uncoalesced(source)
        except BaseException as exc:
            self._release(source)
            pending.set_exception(exc)
            raise
        self._release(source)
        pending.set_result(tree)
        return tree

    def fetch_all(self, sources: Sequence[PinnedSource]) -> list[FetchedTree]:
        """Fetch several sources concurrently, returning trees in input order.

        Every fetch runs to completion; the first failure in input order
        is then raised.
        """
        if not sources:
            return []
        workers = min(self._max_workers, len(sources))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fetch") as pool:
            futures = [pool.submit(self.fetch, source) for source in sources]
        return [future.result() for future in futures]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _await(self, pending: Future[FetchedTree], source: PinnedSource) -> FetchedTree:
        """Result of another caller's fetch, restated against *source*'s pin.

        Errors raised for a different pin of the same identity are
        re-raised naming *source*.  If the content the owner rejected is
        exactly what *source* pins, *source* is fetched on its own.
        """
        try:
            tree = pending.result()
        except IntegrityError as exc:
            if exc.source == source:
                raise
            if exc.actual == source.expected_hash:
                return self.fetch(source)
            raise IntegrityError(
                source, source.expected_hash, exc.actual, detail=exc.detail
            ) from exc
        except FetchError as exc:
            if exc.source == source:
                raise
            raise FetchError(source, exc.reason) from exc
        # Same identity, different pin: the digest decides.
        if tree.source != source:
            return self._checked(source, tree.verified_hash, tree.local_path)
        return tree

    def _release(self, source: PinnedSource) -> None:
        with self._lock:
            self._inflight.pop(source.identity, None)

    def _fetch_uncoalesced(self, source: PinnedSource) -> FetchedTree:
        cached = self._from_store(source)
        if cached is not None:
            return cached

        retriever = self._retriever or select_retriever(source, git=self._git_retriever)
        staging = self._store.staging_dir()
        try:
            logger.info("Fetching %s", source.display_name())
            retriever.retrieve(source, staging)
            actual = tree_digest(staging)
            if actual != source.expected_hash:
                raise IntegrityError(source, source.expected_hash, actual)
            path = self._store.publish_tree(staging, actual)
        except OSError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise FetchError(source, str(exc)) from exc
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise

        self._store.record_identity(source, actual)
        logger.info("Verified %s -> %s", source.display_name(), actual)
        return FetchedTree(source=source, local_path=path, verified_hash=actual)

    def _from_store(self, source: PinnedSource) -> FetchedTree | None:
        """Serve a previously verified identity from the store, if present."""
        recorded = self._store.lookup_identity(source)
        if recorded is None:
            return None
        if recorded != source.expected_hash:
            raise IntegrityError(
                source, source.expected_hash, recorded,
                detail="identity previously resolved to a different digest",
            )
        if not self._store.has_tree(recorded):
            return None

        path = self._store.tree_path(recorded)
        if self._verify_on_hit and not self._store.verify_tree(recorded):
            raise IntegrityError(
                source, recorded, tree_digest(path),
                detail="stored tree no longer matches its address",
            )
        logger.debug("Store hit for %s", source.display_name())
        return self._checked(source, recorded, path)

    @staticmethod
    def _checked(source: PinnedSource, digest: str, path: Path) -> FetchedTree:
        if digest != source.expected_hash:
            raise IntegrityError(
                source, source.expected_hash, digest,
                detail="identity previously resolved to a different digest",
            )
        return FetchedTree(source=source, local_path=path, verified_hash=digest)
