"""Exception hierarchy for geodedupe."""

from __future__ import annotations


class DedupeError(Exception):
    """Base error for deduplication related failures."""


class InvalidRecordError(DedupeError):
    """Raised when a source record cannot be turned into a location.

    Ingestion skips records that raise this error instead of aborting the run.
    """

    def __init__(self, record_id: str | None, reason: str) -> None:
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"{record_id or '<unknown>'} is an invalid record, {reason}")


class LocationStoreError(DedupeError):
    """Raised when a location store operation fails."""


class LocationNotFoundError(LocationStoreError):
    """Raised when a location ID is not present in a store."""

    def __init__(self, location_id: str) -> None:
        self.location_id = location_id
        super().__init__(f"Location not found: {location_id}")


class SimilarityIndexError(DedupeError):
    """Raised when a similarity index cannot add or query a location."""


class ShardError(DedupeError):
    """Raised when processing a single geohash shard fails."""

    def __init__(self, geohash: str, message: str) -> None:
        self.geohash = geohash
        super().__init__(f"Shard {geohash}: {message}")
