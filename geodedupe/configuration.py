"""
Unified configuration primitives for geodedupe runs.

The `DedupeConfig` dataclass is the single entry point that the CLI and the
comparison helpers use to determine backend URIs, worker counts, similarity
thresholds, cache bounds and where scratch files and logs are written.

Example usage::

    from pathlib import Path
    from geodedupe.configuration import DedupeConfig

    config = DedupeConfig.with_root(Path.cwd() / "geodedupe_storage")
    print(config.storage.work_dir)

The configuration loader can execute a user supplied `config.py` file::

    from geodedupe.configuration import load_config_from_file

    config = load_config_from_file("/path/to/config.py")

The file must define a variable named ``GEODEDUPE_CONFIG`` that is an instance
of :class:`DedupeConfig`.
"""

from __future__ import annotations

import os
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, MutableMapping


DEFAULT_STORAGE_ROOT_NAME = "geodedupe_storage"
CONFIG_SYMBOL_NAME = "GEODEDUPE_CONFIG"

DEFAULT_SIMILARITY_INDEX_URI = (
    "chroma://locations-{geohash}?embedder=sentence-transformers"
    "&model=all-MiniLM-L6-v2&max-results=10"
)
DEFAULT_THRESHOLD = 0.25


class ConfigurationError(RuntimeError):
    """Raised when a configuration file or backend URI is invalid."""


def default_worker_count() -> int:
    """Return the default shard worker count (twice the CPU count)."""
    return (os.cpu_count() or 1) * 2


def _ensure_path(path: Path | str) -> Path:
    result = Path(path).expanduser()
    if not result.is_absolute():
        result = result.resolve()
    return result


@dataclass(slots=True)
class StoragePaths:
    """Filesystem locations used by geodedupe."""

    root: Path
    work_dir: Path
    log_dir: Path
    event_log_path: Path

    def ensure_directories(self) -> None:
        """Create directories represented by this configuration."""
        for directory in {self.root, self.work_dir, self.log_dir, self.event_log_path.parent}:
            directory.mkdir(parents=True, exist_ok=True)

    @property
    def event_log_url(self) -> str:
        """Return the SQLAlchemy URL for the event log database."""
        return f"sqlite:///{self.event_log_path}"


@dataclass(slots=True)
class ComparisonSettings:
    """Defaults that influence a shard sweep."""

    threshold: float = DEFAULT_THRESHOLD
    workers: int = field(default_factory=default_worker_count)
    progress_interval: float = 60.0
    stage_to_disk: bool = False
    dedupe_pairs: bool = False

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        if self.progress_interval <= 0:
            raise ConfigurationError(
                f"progress_interval must be positive, got {self.progress_interval}"
            )


@dataclass(slots=True)
class CacheSettings:
    """Bounds for the per-geohash similarity index cache."""

    max_cost: int = 100_000
    ttl_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.max_cost < 1:
            raise ConfigurationError(f"max_cost must be at least 1, got {self.max_cost}")
        if self.ttl_seconds is not None and self.ttl_seconds <= 0:
            raise ConfigurationError(
                f"ttl_seconds must be positive when set, got {self.ttl_seconds}"
            )


@dataclass(slots=True)
class ObservabilitySettings:
    """Global observability and logging configuration."""

    log_level: str = "INFO"
    event_log_url: str | None = None


@dataclass(slots=True)
class BackendSettings:
    """Backend URIs for the location stores and the similarity index."""

    source_location_store_uri: str | None = None
    target_location_store_uri: str | None = None
    similarity_index_uri: str = DEFAULT_SIMILARITY_INDEX_URI


@dataclass(slots=True)
class DedupeConfig:
    """
    Root configuration structure for geodedupe.

    Attributes:
        storage: Filesystem paths for scratch files and logs.
        comparison: Threshold, worker and progress settings for shard sweeps.
        cache: Bounds for the shard index cache used by one-at-a-time comparisons.
        observability: Logging and event configuration.
        backends: Location store and similarity index URIs.
    """

    storage: StoragePaths
    comparison: ComparisonSettings = field(default_factory=ComparisonSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)
    backends: BackendSettings = field(default_factory=BackendSettings)

    @classmethod
    def with_root(
        cls,
        root: Path | str,
        *,
        comparison: ComparisonSettings | None = None,
        cache: CacheSettings | None = None,
        observability: ObservabilitySettings | None = None,
        backends: BackendSettings | None = None,
    ) -> "DedupeConfig":
        """
        Create a DedupeConfig with storage paths derived from a root directory.

        Args:
            root: Root directory for scratch files and logs.
            comparison: Optional comparison settings.
            cache: Optional cache settings.
            observability: Optional observability settings.
            backends: Optional backend URIs.

        Returns:
            Configured DedupeConfig instance.
        """
        root_path = _ensure_path(root)
        storage = StoragePaths(
            root=root_path,
            work_dir=root_path / "work",
            log_dir=root_path / "logs",
            event_log_path=root_path / "logs" / "events.db",
        )
        return cls(
            storage=storage,
            comparison=comparison or ComparisonSettings(),
            cache=cache or CacheSettings(),
            observability=observability or ObservabilitySettings(),
            backends=backends or BackendSettings(),
        )


def default_config(root: Path | None = None) -> DedupeConfig:
    """Return a default configuration rooted at the provided directory."""
    if root is None:
        root = Path.cwd() / DEFAULT_STORAGE_ROOT_NAME
    return DedupeConfig.with_root(root)


def render_default_config(root: Path | None = None) -> str:
    """
    Render the canonical ``config.py`` contents for a user workspace.

    Parameters
    ----------
    root:
        Optional storage root. Defaults to ``<cwd>/geodedupe_storage`` when not
        supplied.

    Returns
    -------
    str
        The string content for a `config.py` file.
    """
    config = default_config(root)
    return textwrap.dedent(
        f"""\
        from pathlib import Path

        from geodedupe.configuration import (
            BackendSettings,
            CacheSettings,
            ComparisonSettings,
            DedupeConfig,
            ObservabilitySettings,
        )


        storage_root = Path({str(config.storage.root)!r})

        # The threshold direction depends on the similarity index: chroma://
        # reports distances (match if <= threshold), memory:// reports cosine
        # scores (match if >= threshold).
        comparison = ComparisonSettings(
            threshold={config.comparison.threshold!r},
            workers={config.comparison.workers!r},
            progress_interval={config.comparison.progress_interval!r},
            stage_to_disk=False,
            dedupe_pairs=False,
        )

        cache = CacheSettings(
            max_cost={config.cache.max_cost!r},
            ttl_seconds=None,
        )

        observability = ObservabilitySettings(
            log_level="INFO",
            event_log_url=None,
        )

        backends = BackendSettings(
            source_location_store_uri=None,
            target_location_store_uri=None,
            similarity_index_uri={config.backends.similarity_index_uri!r},
        )

        GEODEDUPE_CONFIG = DedupeConfig.with_root(
            storage_root,
            comparison=comparison,
            cache=cache,
            observability=observability,
            backends=backends,
        )
        """
    )


def load_config_from_file(path: Path | str) -> DedupeConfig:
    """
    Execute a user provided config module and return ``DedupeConfig``.

    The target file must define a global named ``GEODEDUPE_CONFIG`` that is an
    instance of :class:`DedupeConfig`.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    namespace: MutableMapping[str, Any] = {}
    code = path.read_text()
    compiled = compile(code, str(path), "exec")
    exec(compiled, namespace, namespace)  # noqa: S102 (exec used for config loading)

    if CONFIG_SYMBOL_NAME not in namespace:
        raise ConfigurationError(
            f"Configuration file {path} must define `{CONFIG_SYMBOL_NAME}`"
        )

    config_obj = namespace[CONFIG_SYMBOL_NAME]
    if not isinstance(config_obj, DedupeConfig):
        raise ConfigurationError(
            f"{CONFIG_SYMBOL_NAME} in {path} must be a DedupeConfig, "
            f"got {type(config_obj)!r}"
        )

    return config_obj


__all__ = [
    "BackendSettings",
    "CONFIG_SYMBOL_NAME",
    "CacheSettings",
    "ComparisonSettings",
    "ConfigurationError",
    "DEFAULT_SIMILARITY_INDEX_URI",
    "DEFAULT_STORAGE_ROOT_NAME",
    "DEFAULT_THRESHOLD",
    "DedupeConfig",
    "ObservabilitySettings",
    "StoragePaths",
    "default_config",
    "default_worker_count",
    "load_config_from_file",
    "render_default_config",
]
