"""Similarity index interface, backends and per-shard factory."""

from geodedupe.similarity.base import QueryResult, SimilarityIndex, ThresholdDirection
from geodedupe.similarity.chroma import ChromaSimilarityIndex
from geodedupe.similarity.embeddings import (
    EmbeddingFunction,
    create_embedding_function,
    get_default_embedding_function,
)
from geodedupe.similarity.factory import SimilarityIndexFactory
from geodedupe.similarity.memory import MemorySimilarityIndex
from geodedupe.similarity.null import NullSimilarityIndex

__all__ = [
    "ChromaSimilarityIndex",
    "EmbeddingFunction",
    "MemorySimilarityIndex",
    "NullSimilarityIndex",
    "QueryResult",
    "SimilarityIndex",
    "SimilarityIndexFactory",
    "ThresholdDirection",
    "create_embedding_function",
    "get_default_embedding_function",
]
