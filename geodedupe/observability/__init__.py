"""Structured events emitted by geodedupe runs, and their persistence."""

from geodedupe.observability.events import (
    EventObserver,
    EventRecorder,
    ServiceEvent,
    get_event_recorder,
    reset_event_recorder,
    set_event_recorder,
)
from geodedupe.observability.logging import logging_observer
from geodedupe.observability.storage import EventLogStore, attach_persistent_observer

__all__ = [
    "EventLogStore",
    "EventObserver",
    "EventRecorder",
    "ServiceEvent",
    "attach_persistent_observer",
    "get_event_recorder",
    "logging_observer",
    "reset_event_recorder",
    "set_event_recorder",
]
