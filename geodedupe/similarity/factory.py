"""Per-shard similarity index construction."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from geodedupe.registry import BackendURI, default_similarity_index_registry, resolve_backend
from geodedupe.similarity.base import SimilarityIndex, ThresholdDirection

LOGGER = logging.getLogger(__name__)

# Any valid geohash works here, it only has to satisfy backend name rules.
_VALIDATION_GEOHASH = "s0000"


class SimilarityIndexFactory:
    """
    Build a fresh :class:`SimilarityIndex` for each geohash shard.

    The URI is parsed and validated once, at construction, so configuration
    mistakes surface before any shard runs. ``{geohash}`` placeholders in the
    URI are filled per shard, which keeps concurrently built indexes apart.

    Example:
        >>> factory = SimilarityIndexFactory("memory://?max-results=5")
        >>> with factory.create("dr5ru") as index:
        ...     index.add(location)
    """

    def __init__(self, uri: str | BackendURI, registry: Optional[Mapping[str, Any]] = None) -> None:
        registry = registry if registry is not None else default_similarity_index_registry()
        self._uri, self._index_class = resolve_backend(uri, registry, "similarity index")
        self._index_class.parse_options(self._uri.with_geohash(_VALIDATION_GEOHASH))

    @property
    def uri(self) -> BackendURI:
        return self._uri

    @property
    def direction(self) -> ThresholdDirection:
        """Threshold direction of the indexes this factory builds."""
        return self._index_class.direction

    def create(self, geohash: str) -> SimilarityIndex:
        shard_uri = self._uri.with_geohash(geohash)
        LOGGER.debug("Creating %s similarity index for geohash %s", shard_uri.scheme, geohash)
        return self._index_class.from_uri(shard_uri)

    def __repr__(self) -> str:
        return f"SimilarityIndexFactory({self._uri.raw!r})"
