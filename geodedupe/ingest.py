"""
Populate a location store from raw records.

Records are parsed into :class:`Location` values by a :class:`Parser` and
added to a store. Records that fail with :class:`InvalidRecordError` are
skipped and counted; any other failure stops the run.
"""

from __future__ import annotations

import logging
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Sequence

from geodedupe.errors import InvalidRecordError
from geodedupe.location.base import LocationStore
from geodedupe.location.model import Location
from geodedupe.observability import get_event_recorder
from geodedupe.registry import BackendURI

LOGGER = logging.getLogger(__name__)


class Parser(ABC):
    """Turn one raw record into a :class:`Location`."""

    @classmethod
    def from_uri(cls, uri: BackendURI) -> "Parser":
        uri.check_params(frozenset())
        return cls()

    @abstractmethod
    def parse(self, body: bytes | str) -> Location:
        """
        Parse ``body``.

        Raises:
            InvalidRecordError: If the record cannot describe a location.
        """


class LocationJSONParser(Parser):
    """Parse the canonical JSON encoding produced by :meth:`Location.to_json`."""

    def parse(self, body: bytes | str) -> Location:
        return Location.from_json(body)


class _Signal(Protocol):
    def signal(self, count: int = 1) -> None: ...


@dataclass(slots=True, frozen=True)
class IngestSummary:
    added: int = 0
    skipped: int = 0


def index_locations(
    records: Iterable[bytes | str],
    parser: Parser,
    store: LocationStore,
    monitor: Optional[_Signal] = None,
) -> IngestSummary:
    """
    Parse every record and add the result to ``store``.

    Args:
        records: Raw records, typically lines of a JSON lines file.
        parser: Parser applied to each record.
        store: Destination store. Adds are upserts, so re-running is safe.
        monitor: Optional progress monitor signalled once per added location.

    Returns:
        Counts of added and skipped records.
    """
    added = 0
    skipped = 0
    with get_event_recorder("ingest").span("index") as span:
        try:
            for body in records:
                try:
                    location = parser.parse(body)
                except InvalidRecordError as exc:
                    skipped += 1
                    LOGGER.debug("Skipping record: %s", exc)
                    continue
                store.add(location)
                added += 1
                LOGGER.debug("Added location %s (%s)", location.id, location)
                if monitor is not None:
                    monitor.signal()
        finally:
            span.update(added=added, skipped=skipped)
    LOGGER.info("Indexed %d locations, skipped %d invalid records", added, skipped)
    return IngestSummary(added=added, skipped=skipped)


def iter_jsonl_records(paths: Sequence[str | Path]) -> Iterator[str]:
    """Yield the non-blank lines of each path, ``"-"`` reads stdin."""
    for path in paths:
        if str(path) == "-":
            yield from _non_blank(sys.stdin)
            continue
        with Path(path).expanduser().open("r", encoding="utf-8") as handle:
            yield from _non_blank(handle)


def _non_blank(lines: Iterable[str]) -> Iterator[str]:
    for line in lines:
        stripped = line.strip()
        if stripped:
            yield stripped


__all__ = [
    "IngestSummary",
    "LocationJSONParser",
    "Parser",
    "index_locations",
    "iter_jsonl_records",
]
