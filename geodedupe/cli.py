"""Command line interface for geodedupe.

Commands::

    geodedupe compare --source-location-store-uri ... --target-location-store-uri ...
    geodedupe index --location-store-uri ... [inputs ...]
    geodedupe match --location-store-uri ... [inputs ...]
    geodedupe config [output] [--root DIR] [--force]

``compare`` exits with 0 when every shard completed, 1 when some shards
failed or were cancelled and 2 when the run could not start. ``match``
exits with 1 when a lookup fails part way through.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from contextlib import ExitStack
from pathlib import Path
from typing import Callable, List, Optional

from geodedupe.compare import (
    CachingComparator,
    ProgressMonitor,
    RunStatus,
    ShardOrchestrator,
    open_match_sink,
)
from geodedupe.configuration import (
    DEFAULT_STORAGE_ROOT_NAME,
    ComparisonSettings,
    ConfigurationError,
    DedupeConfig,
    default_config,
    load_config_from_file,
    render_default_config,
)
from geodedupe.errors import DedupeError, InvalidRecordError
from geodedupe.ingest import index_locations, iter_jsonl_records
from geodedupe.observability import (
    EventLogStore,
    attach_persistent_observer,
    get_event_recorder,
    logging_observer,
)
from geodedupe.registry import create_location_store, create_parser
from geodedupe.similarity import SimilarityIndexFactory

LOGGER = logging.getLogger("geodedupe")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else level.upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _load_config(config_path: Optional[str]) -> DedupeConfig:
    """Load configuration from file or use defaults."""
    if config_path:
        return load_config_from_file(config_path)
    return default_config()


def _attach_event_log(stack: ExitStack, url: Optional[str]) -> None:
    if not url:
        return
    store = EventLogStore(url)
    stack.callback(store.close)
    stack.callback(attach_persistent_observer(get_event_recorder(), store))


def _attach_logging_observer(stack: ExitStack, verbose: bool) -> None:
    if not verbose:
        return
    recorder = get_event_recorder()
    recorder.register(logging_observer)
    stack.callback(recorder.unregister, logging_observer)


def _install_cancel_handler(stack: ExitStack, cancel: threading.Event) -> None:
    """Turn the first Ctrl-C into a cooperative cancel of new shards."""
    if threading.current_thread() is not threading.main_thread():
        return

    def _handler(signum, frame) -> None:
        if cancel.is_set():
            raise KeyboardInterrupt
        LOGGER.warning("Interrupted, finishing in-flight shards (press Ctrl-C again to abort)")
        cancel.set()

    previous = signal.signal(signal.SIGINT, _handler)
    stack.callback(signal.signal, signal.SIGINT, previous)


# =============================================================================
# compare
# =============================================================================


def _comparison_settings(config: DedupeConfig, args: argparse.Namespace) -> ComparisonSettings:
    base = config.comparison
    return ComparisonSettings(
        threshold=args.threshold if args.threshold is not None else base.threshold,
        workers=args.workers if args.workers is not None else base.workers,
        progress_interval=(
            args.progress_interval if args.progress_interval is not None else base.progress_interval
        ),
        stage_to_disk=args.stage_to_disk or base.stage_to_disk,
        dedupe_pairs=args.dedupe_pairs or base.dedupe_pairs,
    )


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare two location stores shard by shard."""
    recorder = get_event_recorder("cli")
    with ExitStack() as stack:
        try:
            config = _load_config(args.config)
            _configure_logging(config.observability.log_level, args.verbose)
            settings = _comparison_settings(config, args)
            source_uri = args.source_location_store_uri or config.backends.source_location_store_uri
            target_uri = args.target_location_store_uri or config.backends.target_location_store_uri
            if not source_uri or not target_uri:
                raise ConfigurationError(
                    "Both a source and a target location store URI are required"
                )
            index_factory = SimilarityIndexFactory(
                args.similarity_index_uri or config.backends.similarity_index_uri
            )
            _attach_event_log(stack, args.event_log or config.observability.event_log_url)
            _attach_logging_observer(stack, args.verbose)
            source = stack.enter_context(create_location_store(source_uri))
            target = stack.enter_context(create_location_store(target_uri))
            work_dir = None
            if settings.stage_to_disk:
                config.storage.ensure_directories()
                work_dir = config.storage.work_dir
            sink = stack.enter_context(open_match_sink(args.output, dedupe_pairs=settings.dedupe_pairs))
        except (ConfigurationError, DedupeError) as exc:
            LOGGER.error("Failed to start comparison: %s", exc)
            recorder.record("compare.error", {"error": str(exc)})
            return int(RunStatus.FAILED_TO_START)

        LOGGER.info(
            "Comparing %s against %s (%s index, threshold %s, %s)",
            target_uri,
            source_uri,
            index_factory.uri.scheme,
            settings.threshold,
            index_factory.direction.value,
        )
        cancel = threading.Event()
        _install_cancel_handler(stack, cancel)
        orchestrator = ShardOrchestrator(
            source,
            target,
            index_factory,
            sink,
            settings.threshold,
            workers=settings.workers,
            progress_interval=settings.progress_interval,
            stage_to_disk=settings.stage_to_disk,
            work_dir=work_dir,
        )
        try:
            summary = orchestrator.run(cancel)
        except DedupeError as exc:
            # Raised before any shard ran, for example when enumeration fails.
            LOGGER.error("Comparison failed: %s", exc)
            recorder.record("compare.error", {"error": str(exc)})
            return int(RunStatus.FAILED_TO_START)

    for geohash, error in sorted(summary.failures.items()):
        LOGGER.warning("Failed shard %s: %s", geohash, error)
    return int(summary.status)


# =============================================================================
# index
# =============================================================================


def cmd_index(args: argparse.Namespace) -> int:
    """Populate a location store from JSON lines files."""
    try:
        config = _load_config(args.config)
        _configure_logging(config.observability.log_level, args.verbose)
        _check_progress_interval(args.progress_interval)
        parser = create_parser(args.parser_uri)
        store = create_location_store(args.location_store_uri)
    except (ConfigurationError, DedupeError) as exc:
        LOGGER.error("Failed to start indexing: %s", exc)
        return int(RunStatus.FAILED_TO_START)

    inputs: List[str] = args.inputs or ["-"]
    with store, ProgressMonitor(interval=args.progress_interval, unit="locations") as monitor:
        try:
            summary = index_locations(iter_jsonl_records(inputs), parser, store, monitor=monitor)
        except (DedupeError, OSError) as exc:
            LOGGER.error("Indexing failed: %s", exc)
            return 1
    print(f"Indexed {summary.added} locations, skipped {summary.skipped} invalid records")
    return 0


def _check_progress_interval(value: float) -> None:
    if value <= 0:
        raise ConfigurationError(f"progress_interval must be positive, got {value}")


# =============================================================================
# match
# =============================================================================


def cmd_match(args: argparse.Namespace) -> int:
    """Look up incoming records one at a time through the shard index cache."""
    recorder = get_event_recorder("cli")
    with ExitStack() as stack:
        try:
            config = _load_config(args.config)
            _configure_logging(config.observability.log_level, args.verbose)
            _check_progress_interval(args.progress_interval)
            store_uri = args.location_store_uri or config.backends.source_location_store_uri
            if not store_uri:
                raise ConfigurationError("A location store URI is required")
            parser = create_parser(args.parser_uri)
            index_factory = SimilarityIndexFactory(
                args.similarity_index_uri or config.backends.similarity_index_uri
            )
            threshold = args.threshold if args.threshold is not None else config.comparison.threshold
            _attach_event_log(stack, args.event_log or config.observability.event_log_url)
            _attach_logging_observer(stack, args.verbose)
            store = stack.enter_context(create_location_store(store_uri))
            sink = stack.enter_context(
                open_match_sink(args.output, dedupe_pairs=args.dedupe_pairs or config.comparison.dedupe_pairs)
            )
        except (ConfigurationError, DedupeError) as exc:
            LOGGER.error("Failed to start matching: %s", exc)
            recorder.record("lookup.error", {"error": str(exc)})
            return int(RunStatus.FAILED_TO_START)

        comparator = stack.enter_context(
            CachingComparator(
                store,
                index_factory,
                threshold,
                sink=sink.write,
                parser=parser,
                max_cost=config.cache.max_cost,
                ttl=config.cache.ttl_seconds,
            )
        )
        monitor = stack.enter_context(ProgressMonitor(interval=args.progress_interval, unit="records"))
        compared = matched = skipped = 0
        try:
            for body in iter_jsonl_records(args.inputs or ["-"]):
                try:
                    row = comparator.compare_record(body)
                except InvalidRecordError as exc:
                    skipped += 1
                    LOGGER.debug("Skipping record: %s", exc)
                    continue
                compared += 1
                if row is not None:
                    matched += 1
                monitor.signal()
        except (DedupeError, OSError) as exc:
            LOGGER.error("Matching failed: %s", exc)
            recorder.record("lookup.error", {"error": str(exc)})
            return 1
        LOGGER.info("Shard index cache: %s", comparator.cache.stats)

    print(
        f"Compared {compared} locations, found {matched} matches, skipped {skipped} invalid records",
        file=sys.stderr,
    )
    return 0


# =============================================================================
# config
# =============================================================================


def cmd_config(args: argparse.Namespace) -> int:
    """Write a default config.py."""
    output_path = Path(args.output).expanduser()
    if output_path.exists() and not args.force:
        print(
            f"Error: {output_path} already exists. Use --force to overwrite.",
            file=sys.stderr,
        )
        return 1

    storage_root = (
        Path(args.root).expanduser() if args.root else Path.cwd() / DEFAULT_STORAGE_ROOT_NAME
    )
    output_path.write_text(render_default_config(storage_root))
    default_config(storage_root).storage.ensure_directories()
    print(f"Wrote default configuration to {output_path}")
    return 0


# =============================================================================
# Argument Parsing
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="geodedupe",
        description="Find candidate duplicates between two geospatial location datasets",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    compare = subparsers.add_parser(
        "compare", help="Compare a target location store against a source store"
    )
    compare.add_argument("--config", default=None, help="Path to a geodedupe config.py")
    compare.add_argument(
        "--source-location-store-uri",
        default=None,
        help="Location store whose records populate each shard index, e.g. sql://sqlite3?dsn=source.db",
    )
    compare.add_argument(
        "--target-location-store-uri",
        default=None,
        help="Location store whose records are looked up in each shard index",
    )
    compare.add_argument(
        "--similarity-index-uri",
        default=None,
        help="Similarity index URI, {geohash} is replaced per shard",
    )
    compare.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match threshold (a maximum distance or a minimum score, depending on the index)",
    )
    compare.add_argument("--workers", type=int, default=None, help="Shards processed concurrently")
    compare.add_argument(
        "--output", "-o", default="-", help="CSV output path (default: stdout)"
    )
    compare.add_argument(
        "--progress-interval",
        type=float,
        default=None,
        help="Seconds between progress log lines",
    )
    compare.add_argument(
        "--stage-to-disk",
        action="store_true",
        help="Copy each shard's records to temporary files before indexing",
    )
    compare.add_argument(
        "--dedupe-pairs",
        action="store_true",
        help="Emit each source/target pair at most once",
    )
    compare.add_argument(
        "--event-log",
        default=None,
        help="SQLAlchemy database URL for persisting run events",
    )
    compare.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    index = subparsers.add_parser("index", help="Populate a location store from JSON lines files")
    index.add_argument("--config", default=None, help="Path to a geodedupe config.py")
    index.add_argument("--location-store-uri", required=True, help="Destination location store URI")
    index.add_argument("--parser-uri", default="json://", help="Record parser URI (default: json://)")
    index.add_argument(
        "--progress-interval",
        type=float,
        default=60.0,
        help="Seconds between progress log lines",
    )
    index.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    index.add_argument("inputs", nargs="*", help="JSON lines files, '-' for stdin (default)")

    match = subparsers.add_parser(
        "match", help="Look up incoming records against a location store one at a time"
    )
    match.add_argument("--config", default=None, help="Path to a geodedupe config.py")
    match.add_argument(
        "--location-store-uri",
        default=None,
        help="Location store whose records populate the cached shard indexes",
    )
    match.add_argument("--parser-uri", default="json://", help="Record parser URI (default: json://)")
    match.add_argument(
        "--similarity-index-uri",
        default=None,
        help="Similarity index URI, {geohash} is replaced per shard",
    )
    match.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Match threshold (a maximum distance or a minimum score, depending on the index)",
    )
    match.add_argument("--output", "-o", default="-", help="CSV output path (default: stdout)")
    match.add_argument(
        "--dedupe-pairs",
        action="store_true",
        help="Emit each source/target pair at most once",
    )
    match.add_argument(
        "--progress-interval",
        type=float,
        default=60.0,
        help="Seconds between progress log lines",
    )
    match.add_argument(
        "--event-log",
        default=None,
        help="SQLAlchemy database URL for persisting run events",
    )
    match.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    match.add_argument("inputs", nargs="*", help="JSON lines files, '-' for stdin (default)")

    config = subparsers.add_parser("config", help="Generate a config.py with default settings")
    config.add_argument(
        "output",
        nargs="?",
        default="config.py",
        help="Destination file path (default: config.py)",
    )
    config.add_argument(
        "--root",
        default=None,
        help=f"Root storage directory for generated config (default: <cwd>/{DEFAULT_STORAGE_ROOT_NAME})",
    )
    config.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the destination file if it already exists",
    )
    return parser


COMMANDS: dict[str, Callable[[argparse.Namespace], int]] = {
    "compare": cmd_compare,
    "index": cmd_index,
    "match": cmd_match,
    "config": cmd_config,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command) if args.command else None
    if handler is None:
        parser.print_help()
        return 0
    return handler(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
