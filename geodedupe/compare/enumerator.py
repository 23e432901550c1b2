"""Enumerate the geohash shards of a location store."""

from __future__ import annotations

import logging
from typing import Iterator, List, Optional, Set, Tuple

from geodedupe.location.base import LocationStore

LOGGER = logging.getLogger(__name__)


class ShardEnumerator:
    """
    Collect the distinct geohashes of a (target) location store.

    The full set is buffered, since there are far fewer geohashes than
    locations. Iterating an enumerator is one-shot; use :meth:`collect` to
    get the buffered tuple directly.
    """

    def __init__(self, store: LocationStore) -> None:
        self._store = store
        self._shards: Optional[Tuple[str, ...]] = None
        self._consumed = False

    def collect(self) -> Tuple[str, ...]:
        if self._shards is None:
            seen: Set[str] = set()
            ordered: List[str] = []

            def _visit(geohash: str) -> None:
                if geohash not in seen:
                    seen.add(geohash)
                    ordered.append(geohash)

            self._store.get_geohashes(_visit)
            self._shards = tuple(ordered)
            LOGGER.debug("Enumerated %d geohash shards", len(self._shards))
        return self._shards

    def __iter__(self) -> Iterator[str]:
        if self._consumed:
            raise RuntimeError("ShardEnumerator can only be iterated once")
        self._consumed = True
        return iter(self.collect())

    def __len__(self) -> int:
        return len(self.collect())
