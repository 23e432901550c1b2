"""
Cache of live per-geohash similarity indexes.

Used when locations are compared one at a time against a persistent source
store. Rebuilding a shard index per lookup is wasteful, so built indexes are
kept in a cost-bounded cache keyed by geohash.

Entry cost is the number of source locations in the shard. When the total
cost would exceed ``max_cost`` the least frequently used entries are evicted
(ties go to the least recently used). An evicted index stays usable by
callers still holding a lease on it and is closed once the last lease is
released.

The cache never sees writes to the source store. An optional ``ttl`` bounds
how stale an index can get: entries older than ``ttl`` seconds are rebuilt on
their next lookup.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Iterator, List, Optional

from geodedupe.compare.matcher import MatchCallback, build_match_row, first_match
from geodedupe.compare.models import MatchRow
from geodedupe.errors import ShardError
from geodedupe.location.base import LocationStore
from geodedupe.location.model import Location
from geodedupe.observability import get_event_recorder
from geodedupe.similarity.base import SimilarityIndex
from geodedupe.similarity.factory import SimilarityIndexFactory

if TYPE_CHECKING:
    from geodedupe.ingest import Parser

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_COST = 100_000


@dataclass(slots=True, frozen=True)
class CachedShard:
    """A populated index for one geohash, as handed out by a lease."""

    geohash: str
    index: SimilarityIndex
    count: int
    built_at: float


@dataclass(slots=True, frozen=True)
class CacheStats:
    hits: int
    misses: int
    builds: int
    evictions: int
    entries: int
    cost: int


class _Entry:
    __slots__ = ("shard", "cost", "frequency", "last_used", "leases", "retired", "closed")

    def __init__(self, shard: CachedShard, cost: int, now: float) -> None:
        self.shard = shard
        self.cost = cost
        self.frequency = 0
        self.last_used = now
        self.leases = 0
        self.retired = False
        self.closed = False


class ShardIndexCache:
    """
    Cost-bounded, frequency-aware cache of shard indexes.

    Concurrent lookups of the same missing geohash share a single build.

    Example:
        >>> cache = ShardIndexCache(source, factory, max_cost=50_000, ttl=3600)
        >>> with cache.lease(location.geohash()) as shard:
        ...     shard.index.query(location)
    """

    def __init__(
        self,
        source: LocationStore,
        index_factory: SimilarityIndexFactory,
        max_cost: int = DEFAULT_MAX_COST,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_cost < 1:
            raise ValueError(f"max_cost must be at least 1, got {max_cost}")
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive when set, got {ttl}")
        self._source = source
        self._index_factory = index_factory
        self._max_cost = max_cost
        self._ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, _Entry] = {}
        self._pending: Dict[str, Future] = {}
        self._total_cost = 0
        self._hits = 0
        self._misses = 0
        self._builds = 0
        self._evictions = 0
        self._closed = False

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                builds=self._builds,
                evictions=self._evictions,
                entries=len(self._entries),
                cost=self._total_cost,
            )

    def __contains__(self, geohash: str) -> bool:
        with self._lock:
            return geohash in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @contextmanager
    def lease(self, geohash: str) -> Iterator[CachedShard]:
        """Hold the index for ``geohash`` for the duration of the block."""
        entry = self._acquire(geohash)
        try:
            yield entry.shard
        finally:
            self._release(entry)

    def invalidate(self, geohash: str) -> bool:
        """Drop the entry for ``geohash``. Returns True if one was cached."""
        with self._lock:
            entry = self._entries.pop(geohash, None)
            if entry is None:
                return False
            self._total_cost -= entry.cost
            to_close = self._retire(entry)
        self._close_entries(to_close)
        return True

    def clear(self) -> None:
        with self._lock:
            to_close: List[_Entry] = []
            for entry in self._entries.values():
                to_close.extend(self._retire(entry))
            self._entries.clear()
            self._total_cost = 0
        self._close_entries(to_close)

    def close(self) -> None:
        with self._lock:
            self._closed = True
        self.clear()

    def __enter__(self) -> "ShardIndexCache":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def _acquire(self, geohash: str) -> _Entry:
        while True:
            to_close: List[_Entry] = []
            with self._lock:
                if self._closed:
                    raise RuntimeError("ShardIndexCache is closed")
                now = self._clock()
                entry = self._entries.get(geohash)
                if entry is not None and self._is_expired(entry, now):
                    LOGGER.debug("Cached index for %s expired, rebuilding", geohash)
                    del self._entries[geohash]
                    self._total_cost -= entry.cost
                    to_close = self._retire(entry)
                    entry = None
                if entry is not None:
                    self._hits += 1
                    entry.frequency += 1
                    entry.last_used = now
                    entry.leases += 1
                    return entry
                pending = self._pending.get(geohash)
                is_builder = pending is None
                if is_builder:
                    pending = Future()
                    self._pending[geohash] = pending
                    self._misses += 1
            self._close_entries(to_close)

            if not is_builder:
                # Wait for the in-flight build, then look the key up again.
                pending.result()
                continue

            try:
                entry = self._build(geohash)
            except BaseException as exc:
                with self._lock:
                    self._pending.pop(geohash, None)
                pending.set_exception(exc)
                raise

            with self._lock:
                self._pending.pop(geohash, None)
                entry.leases += 1
                to_close = self._insert(geohash, entry)
            self._close_entries(to_close)
            pending.set_result(None)
            return entry

    def _release(self, entry: _Entry) -> None:
        with self._lock:
            entry.leases -= 1
            to_close = self._retire(entry) if entry.retired else []
        self._close_entries(to_close)

    def _build(self, geohash: str) -> _Entry:
        recorder = get_event_recorder("compare.cache")
        with recorder.span("build", {"geohash": geohash}) as span:
            index = self._index_factory.create(geohash)
            count = 0
            try:
                def _add(location: Location) -> None:
                    nonlocal count
                    index.add(location)
                    count += 1

                self._source.get_with_geohash(geohash, _add)
            except Exception as exc:
                index.close()
                raise ShardError(geohash, f"{type(exc).__name__}: {exc}") from exc
            span["source_count"] = count

        with self._lock:
            self._builds += 1
        built_at = self._clock()
        shard = CachedShard(geohash=geohash, index=index, count=count, built_at=built_at)
        return _Entry(shard, cost=max(1, count), now=built_at)

    def _insert(self, geohash: str, entry: _Entry) -> List[_Entry]:
        if entry.cost > self._max_cost or self._closed:
            # Too large to cache; it lives only as long as its lease.
            entry.retired = True
            return []
        to_close: List[_Entry] = []
        while self._entries and self._total_cost + entry.cost > self._max_cost:
            victim_key = min(
                self._entries,
                key=lambda key: (self._entries[key].frequency, self._entries[key].last_used),
            )
            victim = self._entries.pop(victim_key)
            self._total_cost -= victim.cost
            self._evictions += 1
            LOGGER.debug("Evicting cached index for %s (cost %d)", victim_key, victim.cost)
            to_close.extend(self._retire(victim))
        self._entries[geohash] = entry
        self._total_cost += entry.cost
        return to_close

    def _is_expired(self, entry: _Entry, now: float) -> bool:
        return self._ttl is not None and now - entry.shard.built_at > self._ttl

    @staticmethod
    def _retire(entry: _Entry) -> List[_Entry]:
        """Mark an entry as out of the cache and return it if it can be closed now."""
        entry.retired = True
        if entry.leases == 0 and not entry.closed:
            entry.closed = True
            return [entry]
        return []

    @staticmethod
    def _close_entries(entries: List[_Entry]) -> None:
        for entry in entries:
            try:
                entry.shard.index.close()
            except Exception:
                LOGGER.warning(
                    "Failed to close cached index for %s", entry.shard.geohash, exc_info=True
                )


class CachingComparator:
    """
    Compare single locations against a source store through a shard cache.

    Example:
        >>> comparator = CachingComparator(source, factory, threshold=0.25)
        >>> row = comparator.compare(location)
        >>> comparator.close()
    """

    def __init__(
        self,
        source: LocationStore,
        index_factory: SimilarityIndexFactory,
        threshold: float,
        sink: Optional[MatchCallback] = None,
        parser: Optional["Parser"] = None,
        max_cost: int = DEFAULT_MAX_COST,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = threshold
        self._sink = sink
        self._parser = parser
        self._cache = ShardIndexCache(source, index_factory, max_cost=max_cost, ttl=ttl, clock=clock)

    @property
    def cache(self) -> ShardIndexCache:
        return self._cache

    def compare(self, location: Location) -> Optional[MatchRow]:
        """Return the first qualifying match for ``location``, if any."""
        geohash = location.geohash()
        with self._cache.lease(geohash) as shard:
            if shard.count == 0:
                return None
            result = first_match(shard.index, location, self._threshold)
        if result is None:
            return None
        row = build_match_row(geohash, result, location)
        if self._sink is not None:
            self._sink(row)
        return row

    def compare_record(self, body: bytes | str) -> Optional[MatchRow]:
        """Parse a raw record with the configured parser and compare it."""
        if self._parser is None:
            raise ValueError("CachingComparator has no parser configured")
        return self.compare(self._parser.parse(body))

    def close(self) -> None:
        self._cache.close()

    def __enter__(self) -> "CachingComparator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

