"""Thread-safe CSV output for match rows."""

from __future__ import annotations

import csv
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator, Optional, Set, Tuple

from geodedupe.compare.models import MatchRow


class MatchSink:
    """
    Write :class:`MatchRow` values to a text stream as CSV.

    The header is taken from the first row and written exactly once. Every
    row is flushed as soon as it is written. With ``dedupe_pairs`` a pair
    already written (in either direction) is dropped.
    """

    def __init__(self, stream: IO[str], *, dedupe_pairs: bool = False) -> None:
        self._stream = stream
        self._dedupe_pairs = dedupe_pairs
        self._lock = threading.Lock()
        self._writer: Optional[csv.DictWriter] = None
        self._seen: Set[Tuple[str, str]] = set()
        self._rows_written = 0

    @property
    def rows_written(self) -> int:
        with self._lock:
            return self._rows_written

    def write(self, match: MatchRow) -> bool:
        """Write a match, returning False if it was dropped as a duplicate pair."""
        row = match.to_row()
        with self._lock:
            if self._dedupe_pairs:
                key = match.pair_key()
                if key in self._seen:
                    return False
                self._seen.add(key)
            if self._writer is None:
                self._writer = csv.DictWriter(self._stream, fieldnames=list(row))
                self._writer.writeheader()
            self._writer.writerow(row)
            self._stream.flush()
            self._rows_written += 1
        return True

    __call__ = write


@contextmanager
def open_match_sink(destination: str | Path = "-", *, dedupe_pairs: bool = False) -> Iterator[MatchSink]:
    """Open a sink on a file path, or on stdout for ``"-"``."""
    if str(destination) == "-":
        yield MatchSink(sys.stdout, dedupe_pairs=dedupe_pairs)
        return
    path = Path(destination).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        yield MatchSink(handle, dedupe_pairs=dedupe_pairs)
