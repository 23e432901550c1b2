"""Location model and location store backends."""

from geodedupe.location.base import GeohashVisitor, LocationStore, LocationVisitor
from geodedupe.location.memory import MemoryLocationStore
from geodedupe.location.model import (
    GEOHASH_PRECISION,
    RESERVED_METADATA_KEYS,
    Location,
    alltheplaces_id,
    ilms_id,
    is_reserved_metadata_key,
    overture_id,
    split_namespaced_id,
    whosonfirst_id,
)
from geodedupe.location.null import NullLocationStore
from geodedupe.location.sql import SQLLocationStore

__all__ = [
    "GEOHASH_PRECISION",
    "GeohashVisitor",
    "Location",
    "LocationStore",
    "LocationVisitor",
    "MemoryLocationStore",
    "NullLocationStore",
    "RESERVED_METADATA_KEYS",
    "SQLLocationStore",
    "alltheplaces_id",
    "ilms_id",
    "is_reserved_metadata_key",
    "overture_id",
    "split_namespaced_id",
    "whosonfirst_id",
]
