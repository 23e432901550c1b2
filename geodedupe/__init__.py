"""
geodedupe: candidate duplicate detection between geospatial location datasets

Both datasets are sharded by a 5-character geohash. For every shard a small
similarity index is built from the source locations in that cell and the
target locations of the same cell are looked up in it.

Main Components:
- Location: canonical point-of-interest record with a derived geohash
- LocationStore backends (sql://, memory://, null://)
- SimilarityIndex backends (chroma://, memory://, null://) and SimilarityIndexFactory
- ShardOrchestrator / compare_location_stores: concurrent sweep over every shard
- CachingComparator: one-at-a-time comparisons through a shard index cache

Example:
    >>> from geodedupe import Location, MemoryLocationStore, SimilarityIndexFactory
    >>> from geodedupe import compare_location_stores, open_match_sink
    >>>
    >>> source, target = MemoryLocationStore(), MemoryLocationStore()
    >>> source.add(Location("wof:id=1", "Open Da Night", (-73.60033, 45.524115)))
    >>> factory = SimilarityIndexFactory("memory://?max-results=5")
    >>> with open_match_sink("matches.csv") as sink:
    ...     summary = compare_location_stores(source, target, factory, sink, threshold=0.8)
"""

from geodedupe.compare import (
    CachingComparator,
    ComparisonSummary,
    MatchRow,
    MatchSink,
    RunStatus,
    ShardIndexCache,
    ShardMatcher,
    ShardOrchestrator,
    compare_location_stores,
    open_match_sink,
)
from geodedupe.configuration import ConfigurationError, DedupeConfig, load_config_from_file
from geodedupe.errors import (
    DedupeError,
    InvalidRecordError,
    LocationNotFoundError,
    LocationStoreError,
    ShardError,
    SimilarityIndexError,
)
from geodedupe.location import (
    Location,
    LocationStore,
    MemoryLocationStore,
    NullLocationStore,
    SQLLocationStore,
)
from geodedupe.registry import create_location_store, parse_backend_uri
from geodedupe.similarity import (
    QueryResult,
    SimilarityIndex,
    SimilarityIndexFactory,
    ThresholdDirection,
)

__version__ = "0.1.0"

__all__ = [
    "CachingComparator",
    "ComparisonSummary",
    "ConfigurationError",
    "DedupeConfig",
    "DedupeError",
    "InvalidRecordError",
    "Location",
    "LocationNotFoundError",
    "LocationStore",
    "LocationStoreError",
    "MatchRow",
    "MatchSink",
    "MemoryLocationStore",
    "NullLocationStore",
    "QueryResult",
    "RunStatus",
    "SQLLocationStore",
    "ShardError",
    "ShardIndexCache",
    "ShardMatcher",
    "ShardOrchestrator",
    "SimilarityIndex",
    "SimilarityIndexError",
    "SimilarityIndexFactory",
    "ThresholdDirection",
    "compare_location_stores",
    "create_location_store",
    "load_config_from_file",
    "parse_backend_uri",
]
