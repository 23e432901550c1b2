"""In-process location store, used for tests and small comparisons."""

from __future__ import annotations

import threading
from collections import Counter
from typing import Dict, List

from geodedupe.errors import LocationNotFoundError
from geodedupe.location.base import GeohashVisitor, LocationStore, LocationVisitor, should_stop
from geodedupe.location.model import Location
from geodedupe.registry import BackendURI


class MemoryLocationStore(LocationStore):
    """Dict-backed store. Safe for concurrent readers and writers.

    Iteration works on a snapshot taken under the lock, so visitors may call
    back into the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._locations: Dict[str, Location] = {}
        self._geohashes: Dict[str, str] = {}

    @classmethod
    def from_uri(cls, uri: BackendURI) -> "MemoryLocationStore":
        uri.check_params(frozenset())
        return cls()

    def add(self, location: Location) -> None:
        geohash = location.geohash()
        with self._lock:
            self._locations[location.id] = location
            self._geohashes[location.id] = geohash

    def get_by_id(self, location_id: str) -> Location:
        with self._lock:
            try:
                return self._locations[location_id]
            except KeyError:
                raise LocationNotFoundError(location_id) from None

    def get_with_geohash(self, geohash: str, visit: LocationVisitor) -> None:
        with self._lock:
            matches: List[Location] = [
                self._locations[location_id]
                for location_id, value in self._geohashes.items()
                if value == geohash
            ]
        for location in matches:
            if should_stop(visit(location)):
                return

    def get_geohashes(self, visit: GeohashVisitor) -> None:
        with self._lock:
            counts = Counter(self._geohashes.values())
        for geohash, _count in counts.most_common():
            if should_stop(visit(geohash)):
                return

    def __len__(self) -> int:
        with self._lock:
            return len(self._locations)

    def close(self) -> None:
        pass
