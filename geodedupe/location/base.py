"""
LocationStore: abstract base class for location storage backends.

A location store is append-only storage of :class:`Location` records that can
be read back by exact ID or by geohash bucket. Comparison runs only ever read
from stores; writes happen during a separate indexing phase.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Iterator, List, Optional

from geodedupe.location.model import Location

# A visitor may return False to stop iteration early. Any other return value,
# including None, continues.
LocationVisitor = Callable[[Location], Optional[bool]]
GeohashVisitor = Callable[[str], Optional[bool]]


class LocationStore(ABC):
    """
    Abstract base class for location store implementations.

    Example:
        >>> from geodedupe.location import MemoryLocationStore
        >>> store = MemoryLocationStore()
        >>> store.add(location)
        >>> store.get_with_geohash(location.geohash(), print)
        >>> store.close()
    """

    @abstractmethod
    def add(self, location: Location) -> None:
        """
        Insert or replace a location keyed by its ID.

        Adding the same ID twice leaves a single stored row holding the most
        recent value.
        """

    @abstractmethod
    def get_by_id(self, location_id: str) -> Location:
        """
        Return the location stored under ``location_id``.

        Raises:
            LocationNotFoundError: If no location has that ID.
        """

    @abstractmethod
    def get_with_geohash(self, geohash: str, visit: LocationVisitor) -> None:
        """
        Call ``visit`` once for each stored location in ``geohash``.

        Exceptions raised by ``visit`` stop iteration and propagate unchanged.
        """

    @abstractmethod
    def get_geohashes(self, visit: GeohashVisitor) -> None:
        """Call ``visit`` once per distinct geohash present in the store."""

    @abstractmethod
    def close(self) -> None:
        """Release connections held by the store."""

    def count_with_geohash(self, geohash: str) -> int:
        """Return the number of locations in ``geohash``."""
        total = 0

        def _count(_location: Location) -> None:
            nonlocal total
            total += 1

        self.get_with_geohash(geohash, _count)
        return total

    def iter_with_geohash(self, geohash: str) -> Iterator[Location]:
        """Return the locations in ``geohash`` as an iterator (buffered)."""
        buffer: List[Location] = []
        self.get_with_geohash(geohash, buffer.append)
        return iter(buffer)

    def iter_geohashes(self) -> Iterator[str]:
        buffer: List[str] = []
        self.get_geohashes(buffer.append)
        return iter(buffer)

    def __enter__(self) -> "LocationStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False


def should_stop(result: Optional[bool]) -> bool:
    """Return True when a visitor asked to stop iterating."""
    return result is False
