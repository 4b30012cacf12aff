"""Override manifest builder.

Turns declared overrides into a verified OverrideManifest: duplicate keys
are rejected before any network work, then every distinct pin is fetched
(concurrently, through the coalescing Fetcher) and each declaration is
bound to its verified tree.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from patchforge.core.errors import ConfigError, DuplicateOverrideError
from patchforge.core.fetcher import Fetcher
from patchforge.models.overrides import OverrideManifest, OverrideRule, OverrideSpec
from patchforge.models.sources import FetchedTree, PinnedSource

logger = logging.getLogger(__name__)


def dedupe_overrides(specs: Sequence[OverrideSpec]) -> list[OverrideSpec]:
    """Collapse identical duplicates; reject conflicting ones.

    Two declarations conflict when they share (target_origin, target_name)
    but substitute a different source, revision, digest or subpath.
    """
    seen: dict[tuple[str, str], OverrideSpec] = {}
    for spec in specs:
        existing = seen.get(spec.key)
        if existing is None:
            seen[spec.key] = spec
            continue
        if (
            existing.replacement_identity() != spec.replacement_identity()
            or existing.version != spec.version
        ):
            raise DuplicateOverrideError(
                spec.key,
                existing.replacement_identity(),
                spec.replacement_identity(),
            )
        logger.debug("Ignoring identical duplicate override for %s", spec.key)
    return list(seen.values())


class ManifestBuilder:
    """Builds OverrideManifests from declared overrides.

    Parameters
    ----------
    fetcher:
        The content-addressed fetcher used to materialize replacements.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher

    def build(self, rules: Sequence[OverrideSpec]) -> OverrideManifest:
        """Fetch every replacement and return the keyed manifest.

        Raises ``DuplicateOverrideError`` for conflicting keys, and
        propagates ``IntegrityError`` / ``FetchError`` from the fetcher.
        """
        specs = dedupe_overrides(rules)

        sources: list[PinnedSource] = []
        for spec in specs:
            if spec.source not in sources:
                sources.append(spec.source)

        trees: dict[PinnedSource, FetchedTree] = dict(
            zip(sources, self._fetcher.fetch_all(sources))
        )

        for spec in specs:
            crate_dir = trees[spec.source].local_path / spec.subpath
            if not crate_dir.is_dir():
                raise ConfigError(
                    f"Override {spec.target_name!r}: subpath {spec.subpath!r} "
                    f"not found in {spec.source.display_name()}"
                )

        manifest = OverrideManifest(
            rules=tuple(
                OverrideRule(
                    target_origin=spec.target_origin,
                    target_name=spec.target_name,
                    replacement=trees[spec.source],
                    subpath=spec.subpath,
                    version=spec.version,
                )
                for spec in specs
            )
        )
        logger.info(
            "Built override manifest: %d rule(s) from %d source(s), hash=%s",
            len(manifest),
            len(sources),
            manifest.content_hash(),
        )
        return manifest
