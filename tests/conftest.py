"""Pytest configuration and shared fixtures for geodedupe tests."""

from __future__ import annotations

from collections import Counter
from typing import Dict, List

import pytest

from geodedupe.location import Location, MemoryLocationStore
from geodedupe.observability import ServiceEvent, get_event_recorder, reset_event_recorder
from geodedupe.registry import build_registry, default_similarity_index_registry
from geodedupe.similarity import MemorySimilarityIndex, SimilarityIndexFactory
from tests.fixtures.locations import (
    DISTANT_CENTROID,
    NEARBY_CENTROID,
    SOURCE_CENTROID,
    VocabularyEmbedder,
)


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires optional backends)"
    )


@pytest.fixture
def embedder() -> VocabularyEmbedder:
    return VocabularyEmbedder()


@pytest.fixture
def index_activity() -> Dict[str, Counter]:
    """Per-geohash counters of index adds, queries, creations and closes."""
    return {"adds": Counter(), "queries": Counter(), "created": Counter(), "closed": Counter()}


@pytest.fixture
def index_registry(embedder, index_activity):
    """Similarity index registry whose memory:// backend uses the vocabulary embedder."""

    class VocabularyMemoryIndex(MemorySimilarityIndex):
        geohash = ""

        @classmethod
        def from_uri(cls, uri):
            options = cls.parse_options(uri)
            options.pop("embedder")
            options.pop("model")
            index = cls(embedding_function=embedder, **options)
            index.geohash = uri.netloc
            index_activity["created"][index.geohash] += 1
            return index

        def add(self, location):
            index_activity["adds"][location.geohash()] += 1
            super().add(location)

        def query(self, location):
            index_activity["queries"][location.geohash()] += 1
            return super().query(location)

        def close(self):
            index_activity["closed"][self.geohash] += 1
            super().close()

    return build_registry(default_similarity_index_registry(), {"memory": VocabularyMemoryIndex})


@pytest.fixture
def memory_factory(index_registry) -> SimilarityIndexFactory:
    # The geohash lands in the netloc so tests can see which shard an index serves.
    return SimilarityIndexFactory("memory://{geohash}?max-results=5", index_registry)


@pytest.fixture
def recorded_events():
    """Collect every event recorded through the global recorder."""
    reset_event_recorder()
    events: List[ServiceEvent] = []
    get_event_recorder().register(events.append)
    yield events
    reset_event_recorder()


@pytest.fixture
def open_da_night() -> Location:
    return Location(
        id="s1",
        name="Open Da Night",
        address="124 rue St. Viateur o. Montreal",
        centroid=SOURCE_CENTROID,
    )


@pytest.fixture
def open_da_night_variant() -> Location:
    return Location(
        id="t1",
        name="Open Da Night",
        address="124 St. Viateur Montréal",
        centroid=SOURCE_CENTROID,
    )


@pytest.fixture
def cafe_olympico() -> Location:
    return Location(
        id="t2",
        name="Cafe Olympico",
        address="124 St. Viateur Montréal",
        centroid=SOURCE_CENTROID,
    )


@pytest.fixture
def cafe_italia() -> Location:
    return Location(
        id="t3",
        name="Cafe Italia",
        address="6840 Boul Saint-Laurent",
        centroid=NEARBY_CENTROID,
    )


@pytest.fixture
def distant_park() -> Location:
    return Location(
        id="t4",
        name="Open Da Night",
        address="124 St. Viateur Montréal",
        centroid=DISTANT_CENTROID,
    )


@pytest.fixture
def make_store():
    def _make(*locations: Location) -> MemoryLocationStore:
        store = MemoryLocationStore()
        for location in locations:
            store.add(location)
        return store

    return _make
