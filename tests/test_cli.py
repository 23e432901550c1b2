"""End-to-end tests for the geodedupe command line."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest

from geodedupe.cli import build_parser, main
from geodedupe.compare import CachingComparator
from geodedupe.location import Location
from geodedupe.observability import EventLogStore


def _write_jsonl(path: Path, *locations: Location) -> Path:
    path.write_text("\n".join(location.to_json() for location in locations) + "\n", encoding="utf-8")
    return path


def _sql_uri(path: Path) -> str:
    return f"sql://sqlite3?dsn={path}"


@pytest.fixture
def indexed_stores(tmp_path: Path, open_da_night, open_da_night_variant, cafe_olympico, distant_park):
    source_db = tmp_path / "source.db"
    target_db = tmp_path / "target.db"
    source_jsonl = _write_jsonl(tmp_path / "source.jsonl", open_da_night)
    target_jsonl = _write_jsonl(tmp_path / "target.jsonl", open_da_night_variant, cafe_olympico, distant_park)

    assert main(["index", "--location-store-uri", _sql_uri(source_db), str(source_jsonl)]) == 0
    assert main(["index", "--location-store-uri", _sql_uri(target_db), str(target_jsonl)]) == 0
    return _sql_uri(source_db), _sql_uri(target_db)


@pytest.fixture
def vocabulary_embeddings(mocker, embedder):
    """Route memory:// indexes built by the CLI through the test embedder."""
    return mocker.patch("geodedupe.similarity.memory.create_embedding_function", return_value=embedder)


def test_index_reports_counts(tmp_path: Path, capsys, open_da_night) -> None:
    records = _write_jsonl(tmp_path / "in.jsonl", open_da_night)
    with records.open("a", encoding="utf-8") as handle:
        handle.write('{"id": "broken"}\n')

    code = main(["index", "--location-store-uri", _sql_uri(tmp_path / "db.sqlite"), str(records)])

    assert code == 0
    assert "Indexed 1 locations, skipped 1 invalid records" in capsys.readouterr().out


def test_index_rejects_bad_store_uri(tmp_path: Path) -> None:
    assert main(["index", "--location-store-uri", "sql://sqlite3", str(tmp_path / "x.jsonl")]) == 2


@pytest.mark.parametrize("command", ["index", "match"])
def test_non_positive_progress_interval_exits_2(tmp_path: Path, command: str) -> None:
    args = [
        command,
        "--location-store-uri",
        _sql_uri(tmp_path / "db.sqlite"),
        "--progress-interval",
        "0",
        str(tmp_path / "in.jsonl"),
    ]

    assert main(args) == 2


class TestMatchCommand:
    def test_matches_incoming_records_through_cache(
        self, tmp_path: Path, capsys, indexed_stores, vocabulary_embeddings, open_da_night_variant, cafe_olympico
    ) -> None:
        source_uri, _ = indexed_stores
        incoming = _write_jsonl(tmp_path / "incoming.jsonl", open_da_night_variant, cafe_olympico)
        with incoming.open("a", encoding="utf-8") as handle:
            handle.write('{"id": "t9", "name": "", "centroid": [-73.60033, 45.524115]}\n')
        output = tmp_path / "matches.csv"

        code = main(
            [
                "match",
                "--location-store-uri",
                source_uri,
                "--similarity-index-uri",
                "memory://?max-results=5",
                "--threshold",
                "0.7",
                "--output",
                str(output),
                str(incoming),
            ]
        )

        assert code == 0
        with output.open(newline="", encoding="utf-8") as handle:
            records = list(csv.DictReader(handle))
        assert [(r["geohash"], r["source_id"], r["target_id"]) for r in records] == [("f25dv", "s1", "t1")]
        assert "Compared 2 locations, found 1 matches, skipped 1 invalid records" in capsys.readouterr().err

    def test_cache_bounds_come_from_config(
        self, tmp_path: Path, mocker, indexed_stores, vocabulary_embeddings, open_da_night_variant
    ) -> None:
        source_uri, _ = indexed_stores
        config_py = tmp_path / "config.py"
        config_py.write_text(
            "\n".join(
                [
                    "from geodedupe.configuration import BackendSettings, CacheSettings, ComparisonSettings, DedupeConfig",
                    "",
                    "GEODEDUPE_CONFIG = DedupeConfig.with_root(",
                    f"    {str(tmp_path / 'storage')!r},",
                    "    comparison=ComparisonSettings(threshold=0.7, workers=1),",
                    "    cache=CacheSettings(max_cost=50, ttl_seconds=30.0),",
                    "    backends=BackendSettings(",
                    f"        source_location_store_uri={source_uri!r},",
                    "        similarity_index_uri='memory://',",
                    "    ),",
                    ")",
                    "",
                ]
            )
        )
        comparator = mocker.patch("geodedupe.cli.CachingComparator", wraps=CachingComparator)
        output = tmp_path / "matches.csv"

        code = main(
            [
                "match",
                "--config",
                str(config_py),
                "--output",
                str(output),
                str(_write_jsonl(tmp_path / "incoming.jsonl", open_da_night_variant)),
            ]
        )

        assert code == 0
        assert comparator.call_args.kwargs["max_cost"] == 50
        assert comparator.call_args.kwargs["ttl"] == 30.0
        assert "s1,t1" in output.read_text(encoding="utf-8")

    def test_requires_a_location_store(self, tmp_path: Path) -> None:
        args = ["match", "--similarity-index-uri", "null://", str(tmp_path / "in.jsonl")]

        assert main(args) == 2

    def test_unreadable_input_exits_1(self, tmp_path: Path, indexed_stores) -> None:
        source_uri, _ = indexed_stores
        args = [
            "match",
            "--location-store-uri",
            source_uri,
            "--similarity-index-uri",
            "null://",
            "--output",
            str(tmp_path / "matches.csv"),
            str(tmp_path / "missing.jsonl"),
        ]

        assert main(args) == 1


def test_compare_writes_matches(tmp_path: Path, indexed_stores, vocabulary_embeddings) -> None:
    source_uri, target_uri = indexed_stores
    output = tmp_path / "matches.csv"

    code = main(
        [
            "compare",
            "--source-location-store-uri",
            source_uri,
            "--target-location-store-uri",
            target_uri,
            "--similarity-index-uri",
            "memory://?max-results=5",
            "--threshold",
            "0.7",
            "--workers",
            "2",
            "--output",
            str(output),
        ]
    )

    assert code == 0
    with output.open(newline="", encoding="utf-8") as handle:
        records = list(csv.DictReader(handle))
    assert [(r["geohash"], r["source_id"], r["target_id"]) for r in records] == [("f25dv", "s1", "t1")]


def test_compare_persists_events(tmp_path: Path, indexed_stores) -> None:
    source_uri, target_uri = indexed_stores
    event_log = f"sqlite:///{tmp_path / 'events.db'}"

    code = main(
        [
            "compare",
            "--source-location-store-uri",
            source_uri,
            "--target-location-store-uri",
            target_uri,
            "--similarity-index-uri",
            "null://",
            "--event-log",
            event_log,
            "--output",
            str(tmp_path / "matches.csv"),
        ]
    )

    assert code == 0
    store = EventLogStore(event_log)
    names = {event.name for event in store.fetch_events()}
    store.close()
    assert {"run.start", "match.complete", "run.complete"} <= names
    assert (tmp_path / "matches.csv").read_text() == ""


@pytest.mark.parametrize(
    "extra",
    [
        ["--similarity-index-uri", "faiss://x"],
        ["--similarity-index-uri", "memory://?max-results=0"],
        ["--workers", "0"],
        ["--config", "/nonexistent/config.py"],
    ],
)
def test_compare_configuration_errors_exit_2(tmp_path: Path, extra) -> None:
    args = [
        "compare",
        "--source-location-store-uri",
        "memory://",
        "--target-location-store-uri",
        "memory://",
        "--output",
        str(tmp_path / "out.csv"),
        *extra,
    ]

    assert main(args) == 2


def test_compare_requires_both_stores(tmp_path: Path) -> None:
    args = ["compare", "--source-location-store-uri", "memory://", "--similarity-index-uri", "null://"]

    assert main(args) == 2


def test_compare_uses_config_file(tmp_path: Path, indexed_stores, vocabulary_embeddings) -> None:
    source_uri, target_uri = indexed_stores
    config_py = tmp_path / "config.py"
    config_py.write_text(
        "\n".join(
            [
                "from geodedupe.configuration import BackendSettings, ComparisonSettings, DedupeConfig",
                "",
                "GEODEDUPE_CONFIG = DedupeConfig.with_root(",
                f"    {str(tmp_path / 'storage')!r},",
                "    comparison=ComparisonSettings(threshold=0.7, workers=1, stage_to_disk=True),",
                "    backends=BackendSettings(",
                f"        source_location_store_uri={source_uri!r},",
                f"        target_location_store_uri={target_uri!r},",
                "        similarity_index_uri='memory://',",
                "    ),",
                ")",
                "",
            ]
        )
    )
    output = tmp_path / "matches.csv"

    assert main(["compare", "--config", str(config_py), "--output", str(output)]) == 0
    assert "s1,t1" in output.read_text(encoding="utf-8")
    assert list((tmp_path / "storage" / "work").iterdir()) == []


def test_config_command_writes_loadable_file(tmp_path: Path, capsys) -> None:
    destination = tmp_path / "config.py"

    assert main(["config", str(destination), "--root", str(tmp_path / "storage")]) == 0
    assert "GEODEDUPE_CONFIG" in destination.read_text()
    assert (tmp_path / "storage" / "work").is_dir()

    assert main(["config", str(destination)]) == 1
    assert "already exists" in capsys.readouterr().err


def test_no_command_prints_help(capsys) -> None:
    assert main([]) == 0
    assert "usage: geodedupe" in capsys.readouterr().out


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["compare"])

    assert args.output == "-"
    assert args.threshold is None
    assert args.stage_to_disk is False
