from __future__ import annotations

import io
from pathlib import Path

import pytest

from geodedupe.errors import LocationStoreError
from geodedupe.ingest import LocationJSONParser, index_locations, iter_jsonl_records
from geodedupe.location import Location, MemoryLocationStore


def _records(*locations: Location) -> list[str]:
    return [location.to_json() for location in locations]


def test_index_locations_adds_and_skips(open_da_night, cafe_olympico, recorded_events) -> None:
    store = MemoryLocationStore()
    records = _records(open_da_night, cafe_olympico) + [
        '{"id": "bad", "name": "No centroid"}',
        "not json",
    ]

    summary = index_locations(records, LocationJSONParser(), store)

    assert (summary.added, summary.skipped) == (2, 2)
    assert len(store) == 2
    [complete] = [event for event in recorded_events if event.name == "index.complete"]
    assert complete.service == "ingest"
    assert complete.payload["added"] == 2
    assert complete.payload["skipped"] == 2


def test_index_locations_is_idempotent(open_da_night) -> None:
    store = MemoryLocationStore()

    index_locations(_records(open_da_night), LocationJSONParser(), store)
    index_locations(_records(open_da_night), LocationJSONParser(), store)

    assert len(store) == 1


def test_index_locations_signals_monitor(open_da_night, cafe_olympico, mocker) -> None:
    monitor = mocker.Mock()

    index_locations(_records(open_da_night, cafe_olympico), LocationJSONParser(), MemoryLocationStore(), monitor)

    assert monitor.signal.call_count == 2


def test_store_failures_stop_indexing(open_da_night) -> None:
    class ReadOnlyStore(MemoryLocationStore):
        def add(self, location):
            raise LocationStoreError("read-only")

    with pytest.raises(LocationStoreError):
        index_locations(_records(open_da_night), LocationJSONParser(), ReadOnlyStore())


def test_iter_jsonl_records_skips_blank_lines(tmp_path: Path) -> None:
    first = tmp_path / "a.jsonl"
    second = tmp_path / "b.jsonl"
    first.write_text('{"id": 1}\n\n  \n{"id": 2}\n', encoding="utf-8")
    second.write_text('{"id": 3}', encoding="utf-8")

    assert list(iter_jsonl_records([first, second])) == ['{"id": 1}', '{"id": 2}', '{"id": 3}']


def test_iter_jsonl_records_reads_stdin(monkeypatch) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO('{"id": 1}\n\n'))

    assert list(iter_jsonl_records(["-"])) == ['{"id": 1}']
