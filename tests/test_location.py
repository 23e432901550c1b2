"""Tests for the Location model and namespaced ids."""

from __future__ import annotations

import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from geodedupe.errors import InvalidRecordError
from geodedupe.location import (
    Location,
    RESERVED_METADATA_KEYS,
    alltheplaces_id,
    ilms_id,
    overture_id,
    split_namespaced_id,
    whosonfirst_id,
)

from tests.fixtures.locations import DISTANT_CENTROID, NEARBY_CENTROID, SOURCE_CENTROID


class TestGeohash:
    def test_known_cell(self, open_da_night: Location) -> None:
        assert open_da_night.geohash() == "f25dv"

    def test_nearby_point_shares_cell(self) -> None:
        a = Location(id="a", name="A", centroid=SOURCE_CENTROID)
        b = Location(id="b", name="B", centroid=NEARBY_CENTROID)
        assert a.geohash() == b.geohash()

    def test_distant_point_is_a_different_cell(self) -> None:
        a = Location(id="a", name="A", centroid=SOURCE_CENTROID)
        b = Location(id="b", name="B", centroid=DISTANT_CENTROID)
        assert a.geohash() != b.geohash()

    @given(
        lon=st.floats(min_value=-180, max_value=180, allow_nan=False),
        lat=st.floats(min_value=-90, max_value=90, allow_nan=False),
    )
    def test_deterministic_and_fixed_length(self, lon: float, lat: float) -> None:
        first = Location(id="x", name="X", centroid=(lon, lat))
        second = Location(id="y", name="Y", centroid=(lon, lat))
        assert len(first.geohash()) == 5
        assert first.geohash() == second.geohash()


class TestContentAndMetadata:
    def test_content_joins_name_and_address(self, open_da_night: Location) -> None:
        assert open_da_night.content() == "Open Da Night, 124 rue St. Viateur o. Montreal"
        assert str(open_da_night) == open_da_night.content()

    def test_metadata_injects_geohash(self) -> None:
        location = Location(
            id="wof:id=1",
            name="Cafe",
            centroid=SOURCE_CENTROID,
            custom={"geohash": "bogus", "phone": "555-0100"},
        )
        metadata = location.metadata()
        assert metadata["geohash"] == "f25dv"
        assert metadata["phone"] == "555-0100"
        # Custom metadata itself is left untouched.
        assert location.custom["geohash"] == "bogus"

    def test_reserved_keys(self) -> None:
        assert "geohash" in RESERVED_METADATA_KEYS


class TestSerialization:
    def test_json_round_trip(self, open_da_night: Location) -> None:
        restored = Location.from_json(open_da_night.to_json())
        assert restored == open_da_night
        assert restored.address == open_da_night.address

    def test_to_json_is_stable(self, open_da_night: Location) -> None:
        data = json.loads(open_da_night.to_json())
        assert data["centroid"] == list(SOURCE_CENTROID)
        assert list(data) == sorted(data)

    def test_from_dict_strips_reserved_custom_keys(self) -> None:
        location = Location.from_dict(
            {
                "id": "ovtr:id=9",
                "name": "Park",
                "centroid": [-73.6, 45.52],
                "custom": {"geohash": "zzzzz", "kind": "park"},
            }
        )
        assert location.custom == {"kind": "park"}
        assert location.address == ""

    @pytest.mark.parametrize(
        "data, reason",
        [
            ({"name": "No id", "centroid": [0, 0]}, "missing id"),
            ({"id": "a", "centroid": [0, 0]}, "missing name"),
            ({"id": "a", "name": "No centroid"}, "missing centroid"),
            ({"id": "a", "name": "Bad", "centroid": "north"}, "malformed centroid"),
            ({"id": "a", "name": "Bad", "centroid": [200, 0]}, "out of range"),
            ({"id": "a", "name": "Bad", "centroid": [float("nan"), 0]}, "non-finite"),
            ({"id": "a", "name": "Bad", "centroid": [0, 0], "custom": [1]}, "custom"),
        ],
    )
    def test_from_dict_rejects_invalid_records(self, data, reason) -> None:
        with pytest.raises(InvalidRecordError, match=reason):
            Location.from_dict(data)

    def test_from_json_rejects_garbage(self) -> None:
        with pytest.raises(InvalidRecordError, match="invalid JSON"):
            Location.from_json("{not json")

    def test_constructor_rejects_missing_id(self) -> None:
        with pytest.raises(InvalidRecordError):
            Location(id="", name="Nameless", centroid=(0.0, 0.0))

    def test_constructor_rejects_missing_name(self) -> None:
        with pytest.raises(InvalidRecordError, match="missing name"):
            Location(id="wof:id=9", name="", centroid=SOURCE_CENTROID)

    def test_every_constructible_location_decodes(self, open_da_night: Location) -> None:
        minimal = Location(id="wof:id=9", name="Kiosk", centroid=SOURCE_CENTROID)

        assert Location.from_json(minimal.to_json()) == minimal
        assert Location.from_json(open_da_night.to_json()) == open_da_night


class TestNamespacedIds:
    def test_prefixes(self) -> None:
        assert whosonfirst_id(102) == "wof:id=102"
        assert overture_id("08f2") == "ovtr:id=08f2"
        assert alltheplaces_id("abc") == "alltheplaces:id=abc"
        assert ilms_id(7) == "ilms:id=7"

    def test_split(self) -> None:
        assert split_namespaced_id("wof:id=102") == ("wof", "102")

    @pytest.mark.parametrize("value", ["102", "wof:102", ":id=102", "wof:id="])
    def test_split_rejects_plain_ids(self, value: str) -> None:
        with pytest.raises(ValueError):
            split_namespaced_id(value)
