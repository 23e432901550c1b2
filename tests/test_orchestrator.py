"""Tests for the concurrent shard sweep."""

from __future__ import annotations

import io
import threading

import pytest

from geodedupe.compare import (
    ComparisonSummary,
    MatchRow,
    MatchSink,
    ProgressMonitor,
    RunStatus,
    ShardEnumerator,
    ShardOrchestrator,
    compare_location_stores,
)
from geodedupe.compare.progress import format_duration
from geodedupe.location import Location, MemoryLocationStore


def _grid(prefix: str, count: int, *, suffix: str = "") -> list[Location]:
    """Locations spread over ``count`` distinct geohash cells."""
    locations = []
    for i in range(count):
        # 0.1 degree steps keep each point in its own 5-character cell.
        centroid = (-73.9 + i * 0.1, 45.3 + (i % 3) * 0.1)
        locations.append(
            Location(
                id=f"{prefix}{i}",
                name=f"Depanneur {i}",
                address=f"{i} rue Principale{suffix}",
                centroid=centroid,
            )
        )
    return locations


def _stores(make_store, count: int = 12):
    source = make_store(*_grid("s", count))
    target = make_store(*_grid("t", count, suffix=" Montreal"))
    return source, target


def test_enumerator_is_one_shot(make_store) -> None:
    source, _ = _stores(make_store, 4)
    enumerator = ShardEnumerator(source)

    shards = list(enumerator)

    assert len(shards) == len(set(shards)) == 4
    assert len(enumerator) == 4
    with pytest.raises(RuntimeError):
        iter(enumerator)


def test_concurrent_run_matches_sequential_run(make_store, memory_factory) -> None:
    source, target = _stores(make_store)

    sequential: list[MatchRow] = []
    concurrent_sink = MatchSink(io.StringIO())
    concurrent: list[MatchRow] = []

    compare_location_stores(source, target, memory_factory, sequential.append, 0.7, workers=1)

    def _collect(row: MatchRow) -> bool:
        concurrent.append(row)
        return concurrent_sink.write(row)

    summary = compare_location_stores(source, target, memory_factory, _collect, 0.7, workers=6)

    assert summary.status is RunStatus.CLEAN
    assert summary.total_shards == summary.completed == 12
    assert summary.matches == len(concurrent) == 12
    assert {row.pair_key() for row in concurrent} == {row.pair_key() for row in sequential}
    assert concurrent_sink.rows_written == 12


def test_every_shard_index_is_closed(make_store, memory_factory, index_activity) -> None:
    source, target = _stores(make_store, 6)

    compare_location_stores(source, target, memory_factory, lambda row: None, 0.7, workers=3)

    assert index_activity["created"] == index_activity["closed"]
    assert len(index_activity["created"]) == 6


def test_failed_shard_degrades_run_but_others_complete(make_store, memory_factory) -> None:
    source, target = _stores(make_store, 5)
    broken = _grid("t", 5)[2].geohash()

    class FlakyStore(MemoryLocationStore):
        def get_with_geohash(self, geohash, visit):
            if geohash == broken:
                raise RuntimeError("disk on fire")
            super().get_with_geohash(geohash, visit)

    flaky = FlakyStore()
    for location in _grid("s", 5):
        flaky.add(location)

    rows: list[MatchRow] = []
    summary = ShardOrchestrator(flaky, target, memory_factory, rows.append, 0.7, workers=2).run()

    assert summary.status is RunStatus.DEGRADED
    assert summary.failed == 1
    assert summary.completed == 4
    assert list(summary.failures) == [broken]
    assert "disk on fire" in summary.failures[broken]
    assert {row.geohash for row in rows} == {g for g in target.iter_geohashes() if g != broken}


def test_cancelled_run_dispatches_nothing(make_store, memory_factory, index_activity) -> None:
    source, target = _stores(make_store, 5)
    cancel = threading.Event()
    cancel.set()

    summary = compare_location_stores(
        source, target, memory_factory, lambda row: None, 0.7, workers=2, cancel=cancel
    )

    assert summary.cancelled == 5
    assert summary.completed == 0
    assert summary.status is RunStatus.DEGRADED
    assert sum(index_activity["created"].values()) == 0


def test_cancel_during_run_stops_new_shards(make_store, memory_factory) -> None:
    source, target = _stores(make_store, 8)
    cancel = threading.Event()

    def _cancel_after_first(row: MatchRow) -> None:
        cancel.set()

    summary = compare_location_stores(
        source, target, memory_factory, _cancel_after_first, 0.7, workers=1, cancel=cancel
    )

    assert summary.completed + summary.cancelled + summary.failed == 8
    assert summary.cancelled >= 1
    assert summary.status is RunStatus.DEGRADED


def test_empty_target_is_clean(make_store, memory_factory) -> None:
    source, _ = _stores(make_store, 3)

    summary = compare_location_stores(source, make_store(), memory_factory, lambda row: None, 0.7)

    assert summary.total_shards == 0
    assert summary.status is RunStatus.CLEAN


def test_run_events(make_store, memory_factory, recorded_events) -> None:
    source, target = _stores(make_store, 3)

    compare_location_stores(source, target, memory_factory, lambda row: None, 0.7, workers=2)

    names = [event.name for event in recorded_events if event.service == "compare"]
    assert names == ["run.start", "run.complete"]
    assert recorded_events[-1].payload["status"] == "CLEAN"
    assert sum(1 for event in recorded_events if event.name == "match.complete") == 3


def test_orchestrator_rejects_zero_workers(make_store, memory_factory) -> None:
    with pytest.raises(ValueError):
        ShardOrchestrator(make_store(), make_store(), memory_factory, lambda row: None, 0.7, workers=0)


def test_summary_status_and_dict() -> None:
    summary = ComparisonSummary(total_shards=3, completed=3, matches=2, elapsed=1.23456)

    assert summary.status is RunStatus.CLEAN
    assert summary.as_dict()["elapsed"] == 1.235
    summary.failed = 1
    assert summary.as_dict()["status"] == "DEGRADED"
    assert int(RunStatus.FAILED_TO_START) == 2


class TestProgressMonitor:
    def test_status_line(self) -> None:
        now = [100.0]
        monitor = ProgressMonitor(total=10, interval=3600, clock=lambda: now[0])
        monitor.start()
        try:
            monitor.signal()
            monitor.signal(2)
            now[0] = 100.0 + 3725
            assert monitor.status() == "processed 3/10 shards in 1:02:05"
        finally:
            monitor.stop()

    def test_unknown_total_and_final_report(self) -> None:
        lines: list[str] = []
        with ProgressMonitor(interval=3600, unit="locations", report=lines.append) as monitor:
            monitor.signal(5)

        assert len(lines) == 1
        assert lines[0].startswith("processed 5 locations in ")

    def test_periodic_reports(self) -> None:
        reported = threading.Event()

        def _report(line: str) -> None:
            reported.set()

        with ProgressMonitor(total=1, interval=0.01, report=_report):
            assert reported.wait(5)

    def test_rejects_non_positive_interval(self) -> None:
        with pytest.raises(ValueError):
            ProgressMonitor(interval=0)

    def test_format_duration(self) -> None:
        assert format_duration(59.9) == "0:00:59"
        assert format_duration(86400) == "1 day, 0:00:00"
