"""In-process similarity index using numpy cosine similarity."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

import numpy as np

from geodedupe.location.model import Location
from geodedupe.registry import BackendURI
from geodedupe.similarity.base import QueryResult, SimilarityIndex, ThresholdDirection
from geodedupe.similarity.embeddings import (
    EmbeddingFunction,
    create_embedding_function,
    validate_embedder,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10


class MemorySimilarityIndex(SimilarityIndex):
    """
    Brute-force cosine similarity over embeddings held in memory.

    Results carry a cosine *score* in ``[-1, 1]``; higher is more similar.

    URI form::

        memory://?embedder=sentence-transformers&model=all-MiniLM-L6-v2&max-results=10&min-score=0.5
    """

    direction = ThresholdDirection.SCORE

    def __init__(
        self,
        embedding_function: Optional[EmbeddingFunction] = None,
        *,
        embedder: str = "default",
        model: Optional[str] = None,
        max_results: int = DEFAULT_MAX_RESULTS,
        min_score: Optional[float] = None,
    ) -> None:
        self._embed = embedding_function or create_embedding_function(embedder, model)
        self._max_results = max_results
        self._min_score = min_score
        self._lock = threading.RLock()
        self._positions: Dict[str, int] = {}
        self._ids: List[str] = []
        self._contents: List[str] = []
        self._metadata: List[Dict[str, Any]] = []
        self._vectors: List[np.ndarray] = []
        self._matrix: Optional[np.ndarray] = None
        self._closed = False

    @classmethod
    def parse_options(cls, uri: BackendURI) -> Dict[str, Any]:
        uri.check_params(frozenset({"embedder", "model", "max-results", "min-score"}))
        embedder, model = validate_embedder(uri.get("embedder", "default"), uri.get("model"))
        return {
            "embedder": embedder,
            "model": model,
            "max_results": uri.get_int("max-results", DEFAULT_MAX_RESULTS, minimum=1),
            "min_score": uri.get_float("min-score"),
        }

    def add(self, location: Location) -> None:
        vector = _normalize(np.asarray(self._embed(location.content()), dtype=np.float64))
        with self._lock:
            position = self._positions.get(location.id)
            if position is None:
                self._positions[location.id] = len(self._ids)
                self._ids.append(location.id)
                self._contents.append(location.content())
                self._metadata.append(location.metadata())
                self._vectors.append(vector)
            else:
                self._contents[position] = location.content()
                self._metadata[position] = location.metadata()
                self._vectors[position] = vector
            self._matrix = None

    def query(self, location: Location) -> List[QueryResult]:
        query_vector = _normalize(np.asarray(self._embed(location.content()), dtype=np.float64))
        with self._lock:
            if not self._ids:
                return []
            if self._matrix is None:
                self._matrix = np.vstack(self._vectors)
            scores = self._matrix @ query_vector
            order = np.argsort(-scores, kind="stable")[: self._max_results]
            results = [
                QueryResult(
                    id=self._ids[i],
                    content=self._contents[i],
                    similarity=float(scores[i]),
                    metadata=dict(self._metadata[i]),
                )
                for i in order
            ]
        if self._min_score is not None:
            results = [result for result in results if result.similarity >= self._min_score]
        return results

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._positions.clear()
            self._ids.clear()
            self._contents.clear()
            self._metadata.clear()
            self._vectors.clear()
            self._matrix = None


def _normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0.0:
        return vector
    return vector / norm
