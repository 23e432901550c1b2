"""Location store that discards writes."""

from __future__ import annotations

from geodedupe.errors import LocationNotFoundError
from geodedupe.location.base import GeohashVisitor, LocationStore, LocationVisitor
from geodedupe.location.model import Location
from geodedupe.registry import BackendURI


class NullLocationStore(LocationStore):
    """Accepts every write and never returns anything."""

    @classmethod
    def from_uri(cls, uri: BackendURI) -> "NullLocationStore":
        return cls()

    def add(self, location: Location) -> None:
        pass

    def get_by_id(self, location_id: str) -> Location:
        raise LocationNotFoundError(location_id)

    def get_with_geohash(self, geohash: str, visit: LocationVisitor) -> None:
        pass

    def get_geohashes(self, visit: GeohashVisitor) -> None:
        pass

    def close(self) -> None:
        pass
