"""Logging observer for comparison events."""

from __future__ import annotations

import logging

from geodedupe.observability.events import ServiceEvent

LOGGER = logging.getLogger(__name__)


def logging_observer(event: ServiceEvent) -> None:
    if event.name == "match.complete":
        LOGGER.debug(
            "Shard %s: %s matches from %s targets in %.2f ms",
            event.payload.get("geohash"),
            event.payload.get("match_count"),
            event.payload.get("target_count"),
            event.payload.get("elapsed_ms", 0.0),
        )
    elif event.name == "match.error":
        LOGGER.debug("Shard %s error event: %s", event.payload.get("geohash"), event.payload.get("error"))
    elif event.name == "build.complete":
        LOGGER.debug(
            "Cached index for %s built from %s locations",
            event.payload.get("geohash"),
            event.payload.get("source_count"),
        )
