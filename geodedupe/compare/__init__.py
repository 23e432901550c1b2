"""Shard enumeration, matching, orchestration and output."""

from geodedupe.compare.cache import CachedShard, CacheStats, CachingComparator, ShardIndexCache
from geodedupe.compare.enumerator import ShardEnumerator
from geodedupe.compare.matcher import ShardMatcher, first_match
from geodedupe.compare.models import (
    MATCH_COLUMNS,
    ComparisonSummary,
    MatchRow,
    RunStatus,
    ShardResult,
)
from geodedupe.compare.orchestrator import ShardOrchestrator, compare_location_stores
from geodedupe.compare.progress import ProgressMonitor
from geodedupe.compare.sink import MatchSink, open_match_sink

__all__ = [
    "CacheStats",
    "CachedShard",
    "CachingComparator",
    "ComparisonSummary",
    "MATCH_COLUMNS",
    "MatchRow",
    "MatchSink",
    "ProgressMonitor",
    "RunStatus",
    "ShardEnumerator",
    "ShardIndexCache",
    "ShardMatcher",
    "ShardOrchestrator",
    "ShardResult",
    "compare_location_stores",
    "first_match",
    "open_match_sink",
]
