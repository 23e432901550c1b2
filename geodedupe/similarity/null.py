"""Similarity index that never finds anything."""

from __future__ import annotations

from typing import Any, Dict, List

from geodedupe.location.model import Location
from geodedupe.registry import BackendURI
from geodedupe.similarity.base import QueryResult, SimilarityIndex


class NullSimilarityIndex(SimilarityIndex):
    """Counts adds and returns no neighbours."""

    def __init__(self) -> None:
        self._count = 0

    @classmethod
    def parse_options(cls, uri: BackendURI) -> Dict[str, Any]:
        return {}

    def add(self, location: Location) -> None:
        self._count += 1

    def query(self, location: Location) -> List[QueryResult]:
        return []

    def __len__(self) -> int:
        return self._count

    def close(self) -> None:
        pass
