from __future__ import annotations

from pathlib import Path

import pytest

from geodedupe.configuration import (
    DEFAULT_SIMILARITY_INDEX_URI,
    DEFAULT_THRESHOLD,
    BackendSettings,
    CacheSettings,
    ComparisonSettings,
    ConfigurationError,
    DedupeConfig,
    ObservabilitySettings,
    default_worker_count,
    load_config_from_file,
    render_default_config,
)


def test_dedupe_config_defaults(tmp_path: Path) -> None:
    config = DedupeConfig.with_root(tmp_path)

    assert config.storage.root == tmp_path
    assert config.storage.work_dir == tmp_path / "work"
    assert config.comparison.threshold == DEFAULT_THRESHOLD
    assert config.comparison.workers == default_worker_count()
    assert config.comparison.progress_interval == 60.0
    assert config.cache.ttl_seconds is None
    assert config.observability.event_log_url is None
    assert config.backends.similarity_index_uri == DEFAULT_SIMILARITY_INDEX_URI


def test_dedupe_config_with_custom_settings(tmp_path: Path) -> None:
    config = DedupeConfig.with_root(
        tmp_path,
        comparison=ComparisonSettings(threshold=0.8, workers=3, stage_to_disk=True),
        cache=CacheSettings(max_cost=500, ttl_seconds=30.0),
        observability=ObservabilitySettings(log_level="DEBUG", event_log_url="sqlite:///events.db"),
        backends=BackendSettings(
            source_location_store_uri="sql://sqlite3?dsn=source.db",
            target_location_store_uri="sql://sqlite3?dsn=target.db",
            similarity_index_uri="memory://?max-results=3",
        ),
    )

    assert config.comparison.workers == 3
    assert config.comparison.stage_to_disk is True
    assert config.cache.max_cost == 500
    assert config.observability.event_log_url == "sqlite:///events.db"
    assert config.backends.similarity_index_uri == "memory://?max-results=3"


@pytest.mark.parametrize(
    "factory",
    [
        lambda: ComparisonSettings(workers=0),
        lambda: ComparisonSettings(progress_interval=0),
        lambda: CacheSettings(max_cost=0),
        lambda: CacheSettings(ttl_seconds=-1.0),
    ],
)
def test_settings_reject_invalid_values(factory) -> None:
    with pytest.raises(ConfigurationError):
        factory()


def test_ensure_directories_creates_storage(tmp_path: Path) -> None:
    config = DedupeConfig.with_root(tmp_path / "storage")

    config.storage.ensure_directories()

    assert config.storage.work_dir.is_dir()
    assert config.storage.log_dir.is_dir()
    assert config.storage.event_log_url.startswith("sqlite:///")


def test_rendered_config_loads_back(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    storage_root = tmp_path / "storage_root"
    config_py.write_text(render_default_config(storage_root))

    loaded = load_config_from_file(config_py)

    assert loaded.storage.root == storage_root
    assert loaded.comparison.threshold == DEFAULT_THRESHOLD
    assert loaded.backends.similarity_index_uri == DEFAULT_SIMILARITY_INDEX_URI


def test_load_config_requires_symbol(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    config_py.write_text("VALUE = 1\n")

    with pytest.raises(ConfigurationError, match="GEODEDUPE_CONFIG"):
        load_config_from_file(config_py)


def test_load_config_rejects_wrong_type(tmp_path: Path) -> None:
    config_py = tmp_path / "config.py"
    config_py.write_text("GEODEDUPE_CONFIG = {'threshold': 0.5}\n")

    with pytest.raises(ConfigurationError, match="must be a DedupeConfig"):
        load_config_from_file(config_py)


def test_load_config_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="not found"):
        load_config_from_file(tmp_path / "missing.py")
