"""
Per-shard matching: the heart of a comparison run.

For one geohash the matcher builds a fresh similarity index from the source
locations in that cell, streams the target locations of the same cell
through it and emits at most one match per target location.
"""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from geodedupe.compare.models import MatchRow, ShardResult
from geodedupe.errors import ShardError
from geodedupe.location.base import LocationStore
from geodedupe.location.model import Location
from geodedupe.observability import get_event_recorder
from geodedupe.similarity.base import QueryResult, SimilarityIndex
from geodedupe.similarity.factory import SimilarityIndexFactory

LOGGER = logging.getLogger(__name__)

MatchCallback = Callable[[MatchRow], Any]


def first_match(
    index: SimilarityIndex,
    location: Location,
    threshold: float,
) -> Optional[QueryResult]:
    """
    Return the first ranked neighbour of ``location`` that passes ``threshold``.

    The location itself is never a candidate, which matters when the source
    and target stores overlap. Returns None when nothing qualifies.
    """
    for result in index.query(location):
        if result.id == location.id:
            continue
        if index.meets_threshold(result, threshold):
            return result
    return None


def build_match_row(geohash: str, result: QueryResult, target: Location) -> MatchRow:
    return MatchRow(
        geohash=geohash,
        source_id=result.id,
        target_id=target.id,
        source_content=result.content,
        target_content=target.content(),
        similarity=result.similarity,
    )


@dataclass(slots=True)
class _ShardCounts:
    source: int = 0
    target: int = 0
    matches: int = 0


class ShardMatcher:
    """
    Match the target locations of one geohash against its source locations.

    Args:
        source: Store whose locations populate the shard index.
        target: Store whose locations are looked up in the index.
        index_factory: Builds a fresh, geohash-scoped index per shard.
        threshold: Similarity threshold, read in the index's direction.
        sink: Called once per emitted match. Returning ``False`` marks the row
            as dropped (for example a duplicate pair) so it is not counted.
        stage_to_disk: Copy both subsets to JSON lines files in a temporary
            directory before indexing, and read them back from there.
        work_dir: Parent directory for staging files, defaults to the system
            temporary directory.
    """

    def __init__(
        self,
        source: LocationStore,
        target: LocationStore,
        index_factory: SimilarityIndexFactory,
        threshold: float,
        sink: MatchCallback,
        *,
        stage_to_disk: bool = False,
        work_dir: Optional[Path] = None,
    ) -> None:
        self._source = source
        self._target = target
        self._index_factory = index_factory
        self._threshold = threshold
        self._sink = sink
        self._stage_to_disk = stage_to_disk
        self._work_dir = work_dir

    def match(self, geohash: str) -> ShardResult:
        """
        Process one shard.

        Raises:
            ShardError: If reading a store or using the index fails. The
                shard's index and staging files are released either way.
        """
        counts = _ShardCounts()
        started = time.perf_counter()
        recorder = get_event_recorder("compare.shard")
        with recorder.span("match", {"geohash": geohash}) as span:
            try:
                if self._stage_to_disk:
                    self._match_staged(geohash, counts)
                else:
                    self._match_streaming(geohash, counts)
            except ShardError:
                raise
            except Exception as exc:
                raise ShardError(geohash, f"{type(exc).__name__}: {exc}") from exc
            finally:
                span.update(
                    source_count=counts.source,
                    target_count=counts.target,
                    match_count=counts.matches,
                )

        elapsed = time.perf_counter() - started
        LOGGER.debug(
            "Shard %s: %d source, %d target, %d matches in %.3fs",
            geohash,
            counts.source,
            counts.target,
            counts.matches,
            elapsed,
        )
        return ShardResult(
            geohash=geohash,
            source_count=counts.source,
            target_count=counts.target,
            match_count=counts.matches,
            elapsed=elapsed,
        )

    def _match_streaming(self, geohash: str, counts: _ShardCounts) -> None:
        index = self._index_factory.create(geohash)
        try:
            def _add(location: Location) -> None:
                index.add(location)
                counts.source += 1

            self._source.get_with_geohash(geohash, _add)
            if counts.source == 0:
                LOGGER.debug("Shard %s has no source locations, skipping targets", geohash)
                return
            self._target.get_with_geohash(
                geohash, lambda location: self._compare(geohash, index, location, counts)
            )
        finally:
            index.close()

    def _match_staged(self, geohash: str, counts: _ShardCounts) -> None:
        with tempfile.TemporaryDirectory(
            prefix=f"geodedupe-{geohash}-", dir=self._work_dir
        ) as staging:
            source_path = Path(staging) / "source.jsonl"
            target_path = Path(staging) / "target.jsonl"

            counts.source = _stage(self._source, geohash, source_path)
            if counts.source == 0:
                LOGGER.debug("Shard %s has no source locations, skipping targets", geohash)
                return
            staged_targets = _stage(self._target, geohash, target_path)
            if staged_targets == 0:
                return

            index = self._index_factory.create(geohash)
            try:
                for location in _read_staged(source_path):
                    index.add(location)
                for location in _read_staged(target_path):
                    self._compare(geohash, index, location, counts)
            finally:
                index.close()

    def _compare(
        self,
        geohash: str,
        index: SimilarityIndex,
        location: Location,
        counts: _ShardCounts,
    ) -> None:
        counts.target += 1
        result = first_match(index, location, self._threshold)
        if result is None:
            return
        if self._sink(build_match_row(geohash, result, location)) is not False:
            counts.matches += 1


def _stage(store: LocationStore, geohash: str, path: Path) -> int:
    written = 0
    with path.open("w", encoding="utf-8") as handle:

        def _write(location: Location) -> None:
            nonlocal written
            handle.write(location.to_json())
            handle.write("\n")
            written += 1

        store.get_with_geohash(geohash, _write)
    return written


def _read_staged(path: Path) -> Iterator[Location]:
    with path.open("r", encoding="utf-8") as handle:
        for line in handle:
            if line.strip():
                yield Location.from_json(line)
