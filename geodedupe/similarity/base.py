"""
SimilarityIndex: abstract base class for per-shard nearest-neighbour indexes.

An index is created for exactly one geohash shard, populated with the shard's
source locations and queried once per target location. Backends report either
a distance (lower is more similar) or a score (higher is more similar), see
:class:`ThresholdDirection`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from geodedupe.location.model import Location
from geodedupe.registry import BackendURI


class ThresholdDirection(str, Enum):
    """How a backend's similarity value compares against a threshold."""

    DISTANCE = "distance"
    SCORE = "score"

    def is_satisfied(self, value: float, threshold: float) -> bool:
        if self is ThresholdDirection.DISTANCE:
            return value <= threshold
        return value >= threshold

    def stricter(self, a: float, b: float) -> float:
        """Return whichever of two thresholds admits fewer matches."""
        if self is ThresholdDirection.DISTANCE:
            return min(a, b)
        return max(a, b)


@dataclass(slots=True, frozen=True)
class QueryResult:
    """A ranked neighbour returned by :meth:`SimilarityIndex.query`."""

    id: str
    content: str
    similarity: float
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)


class SimilarityIndex(ABC):
    """
    Abstract base class for similarity index implementations.

    Subclasses set :attr:`direction` and implement ``add``, ``query``,
    ``close`` and ``__len__``. Indexes are built from configuration strings
    through :meth:`from_uri`; :meth:`parse_options` validates such a string
    without building anything.

    Example:
        >>> with MemorySimilarityIndex(embedding_function=embed) as index:
        ...     index.add(source)
        ...     results = index.query(target)
    """

    direction: ThresholdDirection = ThresholdDirection.DISTANCE

    @classmethod
    def parse_options(cls, uri: BackendURI) -> Dict[str, Any]:
        """Return constructor keyword arguments for ``uri``.

        Raises:
            ConfigurationError: If ``uri`` carries unknown or malformed parameters.
        """
        uri.check_params(frozenset())
        return {}

    @classmethod
    def from_uri(cls, uri: BackendURI) -> "SimilarityIndex":
        return cls(**cls.parse_options(uri))

    @abstractmethod
    def add(self, location: Location) -> None:
        """
        Index a location's content, replacing any entry with the same ID.

        The location must be visible to queries issued after this returns.
        """

    @abstractmethod
    def query(self, location: Location) -> List[QueryResult]:
        """Return the nearest neighbours of ``location``, most similar first."""

    @abstractmethod
    def close(self) -> None:
        """Release backing storage. Calling close twice is harmless."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of indexed locations."""

    def meets_threshold(self, result: QueryResult, threshold: float) -> bool:
        return self.direction.is_satisfied(result.similarity, threshold)

    def __enter__(self) -> "SimilarityIndex":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False
