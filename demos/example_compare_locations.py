"""
Example usage of geodedupe.

This script demonstrates:
1. Loading two small location datasets into SQLite location stores
2. Comparing them shard by shard with a local similarity index
3. Comparing a single incoming record through the shard index cache

Requires sentence-transformers (pip install sentence-transformers).
"""

import sys
import tempfile
from pathlib import Path

from geodedupe import (
    CachingComparator,
    Location,
    SQLLocationStore,
    SimilarityIndexFactory,
    compare_location_stores,
    open_match_sink,
)
from geodedupe.location import alltheplaces_id, whosonfirst_id

SOURCE = [
    Location(
        id=whosonfirst_id(1108830809),
        name="Open Da Night",
        address="124 rue St. Viateur o. Montreal",
        centroid=(-73.60033, 45.524115),
    ),
    Location(
        id=whosonfirst_id(1108830811),
        name="Cafe Italia",
        address="6840 Boul Saint-Laurent",
        centroid=(-73.6148, 45.5327),
    ),
]

TARGET = [
    Location(
        id=alltheplaces_id("odn-1"),
        name="Open Da Night",
        address="124 St. Viateur Montréal",
        centroid=(-73.60033, 45.524115),
    ),
    Location(
        id=alltheplaces_id("olympico-1"),
        name="Cafe Olympico",
        address="124 St. Viateur Montréal",
        centroid=(-73.60033, 45.524115),
    ),
    Location(
        id=alltheplaces_id("odn-toronto"),
        name="Open Da Night",
        address="124 St. Viateur Montréal",
        centroid=(-79.3832, 43.6532),
    ),
]


def main():
    print("=" * 70)
    print("geodedupe Location Comparison Example")
    print("=" * 70)
    print()

    workspace = Path(tempfile.mkdtemp(prefix="geodedupe-demo-"))
    source = SQLLocationStore("sqlite3", str(workspace / "source.db"))
    target = SQLLocationStore("sqlite3", str(workspace / "target.db"))

    # Step 1: Index both datasets
    print("Step 1: Indexing locations...")
    print("-" * 70)
    for location in SOURCE:
        source.add(location)
    for location in TARGET:
        target.add(location)
        print(f"  {location.id:<28} geohash={location.geohash()}  {location}")
    print()

    # Step 2: Sweep every shard. memory:// reports cosine scores, so the
    # threshold is a minimum.
    print("Step 2: Comparing shards...")
    print("-" * 70)
    factory = SimilarityIndexFactory("memory://?embedder=sentence-transformers&max-results=5")
    with open_match_sink("-") as sink:
        summary = compare_location_stores(source, target, factory, sink, threshold=0.8, workers=2)
    print()
    print(f"  Summary: {summary.as_dict()}")
    print()

    # Step 3: Compare one record at a time through the cache
    print("Step 3: Comparing a single incoming record...")
    print("-" * 70)
    incoming = Location(
        id=alltheplaces_id("odn-2"),
        name="Open Da Nite",
        address="124 Rue Saint-Viateur Ouest",
        centroid=(-73.6001, 45.5243),
    )
    with CachingComparator(source, factory, threshold=0.7) as comparator:
        row = comparator.compare(incoming)
        if row is None:
            print("  No candidate duplicate found")
        else:
            print(f"  {row.target_id} looks like {row.source_id} ({row.similarity:.3f})")
        print(f"  Cache: {comparator.cache.stats}")

    source.close()
    target.close()
    return int(summary.status)


if __name__ == "__main__":
    sys.exit(main())
