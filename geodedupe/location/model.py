"""Canonical location model shared by stores, indexes and matchers."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

import pygeohash

from geodedupe.errors import InvalidRecordError

GEOHASH_PRECISION = 5
GEOHASH_METADATA_KEY = "geohash"
RESERVED_METADATA_KEYS = frozenset({GEOHASH_METADATA_KEY})

WHOSONFIRST_PREFIX = "wof"
OVERTURE_PREFIX = "ovtr"
ALLTHEPLACES_PREFIX = "alltheplaces"
ILMS_PREFIX = "ilms"

Centroid = Tuple[float, float]


def is_reserved_metadata_key(key: str) -> bool:
    """Return True if ``key`` is managed by the model and cannot be set by callers."""
    return key in RESERVED_METADATA_KEYS


def _coerce_centroid(location_id: str | None, value: Any) -> Centroid:
    if value is None:
        raise InvalidRecordError(location_id, "missing centroid")
    try:
        lon, lat = value
        point = (float(lon), float(lat))
    except (TypeError, ValueError) as exc:
        raise InvalidRecordError(location_id, f"malformed centroid {value!r}") from exc
    if not all(math.isfinite(coord) for coord in point):
        raise InvalidRecordError(location_id, f"non-finite centroid {value!r}")
    if not (-180.0 <= point[0] <= 180.0 and -90.0 <= point[1] <= 90.0):
        raise InvalidRecordError(location_id, f"centroid out of range {value!r}")
    return point


@dataclass(slots=True, frozen=True)
class Location:
    """A point of interest ready for deduplication.

    Attributes:
        id: Globally unique identifier, usually namespaced (``"wof:id=123"``).
        name: Display name.
        centroid: ``(longitude, latitude)``.
        address: Free-text address, may be empty.
        custom: Additional string-keyed metadata.
    """

    id: str
    name: str
    centroid: Centroid
    address: str = ""
    custom: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidRecordError(None, "missing id")
        if not self.name or not isinstance(self.name, str):
            raise InvalidRecordError(self.id, "missing name")
        object.__setattr__(self, "centroid", _coerce_centroid(self.id, self.centroid))
        object.__setattr__(self, "custom", dict(self.custom or {}))

    @property
    def longitude(self) -> float:
        return self.centroid[0]

    @property
    def latitude(self) -> float:
        return self.centroid[1]

    def geohash(self) -> str:
        """Return the fixed precision geohash of the centroid."""
        return pygeohash.encode(self.latitude, self.longitude, precision=GEOHASH_PRECISION)

    def content(self) -> str:
        """Return the text handed to similarity backends."""
        return f"{self.name}, {self.address}"

    def __str__(self) -> str:
        return self.content()

    def metadata(self) -> Dict[str, Any]:
        """Return custom metadata with the reserved geohash key injected."""
        result = dict(self.custom)
        result[GEOHASH_METADATA_KEY] = self.geohash()
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "centroid": [self.longitude, self.latitude],
            "custom": dict(self.custom),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Location":
        """Build a location from its canonical mapping.

        Raises:
            InvalidRecordError: If the id, name or centroid is missing or malformed.
        """
        if not isinstance(data, Mapping):
            raise InvalidRecordError(None, f"expected an object, got {type(data).__name__}")
        location_id = data.get("id")
        if not location_id or not isinstance(location_id, str):
            raise InvalidRecordError(None, "missing id")
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise InvalidRecordError(location_id, "missing name")
        custom = data.get("custom") or {}
        if not isinstance(custom, Mapping):
            raise InvalidRecordError(location_id, "custom must be an object")
        return cls(
            id=location_id,
            name=name,
            address=str(data.get("address") or ""),
            centroid=_coerce_centroid(location_id, data.get("centroid")),
            custom={key: value for key, value in custom.items() if not is_reserved_metadata_key(key)},
        )

    @classmethod
    def from_json(cls, text: str | bytes) -> "Location":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise InvalidRecordError(None, f"invalid JSON: {exc}") from exc
        return cls.from_dict(data)


def namespaced_id(prefix: str, value: Any) -> str:
    """Return ``"{prefix}:id={value}"``."""
    return f"{prefix}:id={value}"


def whosonfirst_id(value: Any) -> str:
    return namespaced_id(WHOSONFIRST_PREFIX, value)


def overture_id(value: Any) -> str:
    return namespaced_id(OVERTURE_PREFIX, value)


def alltheplaces_id(value: Any) -> str:
    return namespaced_id(ALLTHEPLACES_PREFIX, value)


def ilms_id(value: Any) -> str:
    return namespaced_id(ILMS_PREFIX, value)


def split_namespaced_id(value: str) -> Tuple[str, str]:
    """Split ``"{prefix}:id={id}"`` into ``(prefix, id)``.

    Raises:
        ValueError: If ``value`` is not namespaced.
    """
    prefix, sep, remainder = value.partition(":id=")
    if not sep or not prefix or not remainder:
        raise ValueError(f"Not a namespaced location id: {value!r}")
    return prefix, remainder


__all__ = [
    "ALLTHEPLACES_PREFIX",
    "GEOHASH_METADATA_KEY",
    "GEOHASH_PRECISION",
    "ILMS_PREFIX",
    "Location",
    "OVERTURE_PREFIX",
    "RESERVED_METADATA_KEYS",
    "WHOSONFIRST_PREFIX",
    "alltheplaces_id",
    "ilms_id",
    "is_reserved_metadata_key",
    "namespaced_id",
    "overture_id",
    "split_namespaced_id",
    "whosonfirst_id",
]
