"""
Bounded-concurrency sweep over every geohash shard of a target store.

A run enumerates the target's geohashes, hands each one to a
:class:`ShardMatcher` on a thread pool and waits for all of them. A failing
shard is logged and counted, the remaining shards carry on.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from geodedupe.compare.enumerator import ShardEnumerator
from geodedupe.compare.matcher import MatchCallback, ShardMatcher
from geodedupe.compare.models import ComparisonSummary, ShardResult
from geodedupe.compare.progress import ProgressMonitor
from geodedupe.configuration import default_worker_count
from geodedupe.location.base import LocationStore
from geodedupe.observability import get_event_recorder
from geodedupe.similarity.factory import SimilarityIndexFactory

LOGGER = logging.getLogger(__name__)

# How often a blocked dispatcher re-checks the cancel event.
_CANCEL_POLL_SECONDS = 0.1


class ShardOrchestrator:
    """
    Drive every shard of ``target`` through a :class:`ShardMatcher`.

    At most ``workers`` shards are in flight at any time. Setting the
    ``cancel`` event passed to :meth:`run` stops new shards from being
    dispatched; shards already running finish normally.

    Example:
        >>> orchestrator = ShardOrchestrator(source, target, factory, sink, threshold=0.25)
        >>> summary = orchestrator.run()
        >>> summary.status
        <RunStatus.CLEAN: 0>
    """

    def __init__(
        self,
        source: LocationStore,
        target: LocationStore,
        index_factory: SimilarityIndexFactory,
        sink: MatchCallback,
        threshold: float,
        *,
        workers: Optional[int] = None,
        progress_interval: float = 60.0,
        stage_to_disk: bool = False,
        work_dir: Optional[Path] = None,
    ) -> None:
        workers = workers if workers is not None else default_worker_count()
        if workers < 1:
            raise ValueError(f"workers must be at least 1, got {workers}")
        self._target = target
        self._workers = workers
        self._progress_interval = progress_interval
        self._matcher = ShardMatcher(
            source,
            target,
            index_factory,
            threshold,
            sink,
            stage_to_disk=stage_to_disk,
            work_dir=work_dir,
        )

    @property
    def workers(self) -> int:
        return self._workers

    def run(self, cancel: Optional[threading.Event] = None) -> ComparisonSummary:
        """Process every shard and return the aggregate summary."""
        recorder = get_event_recorder("compare")
        started = time.perf_counter()
        shards = ShardEnumerator(self._target).collect()
        summary = ComparisonSummary(total_shards=len(shards))
        summary_lock = threading.Lock()
        throttle = threading.BoundedSemaphore(self._workers)

        LOGGER.info("Comparing %d geohash shards with %d workers", len(shards), self._workers)
        recorder.record("run.start", {"total_shards": len(shards), "workers": self._workers})

        with ProgressMonitor(len(shards), self._progress_interval) as monitor:
            with ThreadPoolExecutor(
                max_workers=self._workers, thread_name_prefix="geodedupe-shard"
            ) as executor:

                def _on_done(future: Future) -> None:
                    try:
                        result: ShardResult = future.result()
                        with summary_lock:
                            if result.ok:
                                summary.completed += 1
                                summary.matches += result.match_count
                            else:
                                summary.failed += 1
                                summary.failures[result.geohash] = result.error or ""
                        monitor.signal()
                    finally:
                        throttle.release()

                for position, geohash in enumerate(shards):
                    if not _acquire(throttle, cancel):
                        skipped = len(shards) - position
                        with summary_lock:
                            summary.cancelled += skipped
                        LOGGER.warning("Cancelled, %d shards not dispatched", skipped)
                        break
                    executor.submit(self._run_shard, geohash).add_done_callback(_on_done)

        summary.elapsed = time.perf_counter() - started
        LOGGER.info(
            "Finished %d/%d shards (%d failed, %d cancelled), %d matches in %.1fs",
            summary.completed,
            summary.total_shards,
            summary.failed,
            summary.cancelled,
            summary.matches,
            summary.elapsed,
        )
        recorder.record("run.complete", summary.as_dict())
        return summary

    def _run_shard(self, geohash: str) -> ShardResult:
        started = time.perf_counter()
        try:
            return self._matcher.match(geohash)
        except Exception as exc:
            LOGGER.error("Shard %s failed: %s", geohash, exc, exc_info=LOGGER.isEnabledFor(logging.DEBUG))
            return ShardResult(
                geohash=geohash,
                elapsed=time.perf_counter() - started,
                error=str(exc),
            )


def _acquire(throttle: threading.BoundedSemaphore, cancel: Optional[threading.Event]) -> bool:
    if cancel is None:
        throttle.acquire()
        return True
    while not cancel.is_set():
        if throttle.acquire(timeout=_CANCEL_POLL_SECONDS):
            if cancel.is_set():
                throttle.release()
                return False
            return True
    return False


def compare_location_stores(
    source: LocationStore,
    target: LocationStore,
    index_factory: SimilarityIndexFactory,
    sink: MatchCallback,
    threshold: float,
    *,
    workers: Optional[int] = None,
    progress_interval: float = 60.0,
    stage_to_disk: bool = False,
    work_dir: Optional[Path] = None,
    cancel: Optional[threading.Event] = None,
) -> ComparisonSummary:
    """Compare every geohash shard of ``target`` against ``source``."""
    orchestrator = ShardOrchestrator(
        source,
        target,
        index_factory,
        sink,
        threshold,
        workers=workers,
        progress_interval=progress_interval,
        stage_to_disk=stage_to_disk,
        work_dir=work_dir,
    )
    return orchestrator.run(cancel)
