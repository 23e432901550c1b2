"""Event primitives and dispatcher for geodedupe observability."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Dict, Iterator, Tuple

Metadata = Dict[str, Any]
EventObserver = Callable[["ServiceEvent"], None]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ServiceEvent:
    """Event emitted from geodedupe components for observability."""

    timestamp: datetime
    service: str
    name: str
    payload: Metadata = field(default_factory=dict)


def _split_service(service: Sequence[str] | str | None) -> Tuple[str, ...]:
    if service is None:
        return ()
    if isinstance(service, str):
        return tuple(part for part in service.split(".") if part)
    return tuple(part for part in service if part)


class EventRecorder:
    """Dispatches service events to registered observers.

    Scoped recorders share the observer list and lock of the root recorder
    they were derived from, so registering on any of them is global.
    """

    __slots__ = ("_path", "_observers", "_lock")

    def __init__(
        self,
        service: Sequence[str] | str | None = None,
        *,
        parent: "EventRecorder" | None = None,
    ) -> None:
        if parent is None:
            self._path: Tuple[str, ...] = _split_service(service)
            self._observers: list[EventObserver] = []
            self._lock = RLock()
        else:
            self._path = parent._path + _split_service(service)
            self._observers = parent._observers
            self._lock = parent._lock

    @property
    def service(self) -> str:
        """Return the dotted service namespace for this recorder."""
        return ".".join(self._path)

    def scoped(self, service: Sequence[str] | str) -> "EventRecorder":
        """Return a child recorder nested under ``service``."""
        return EventRecorder(service, parent=self)

    def register(self, observer: EventObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def unregister(self, observer: EventObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def clear_observers(self) -> None:
        with self._lock:
            self._observers.clear()

    @contextmanager
    def temporary_observer(self, observer: EventObserver) -> Iterator[None]:
        """Register an observer for the duration of the context manager."""
        self.register(observer)
        try:
            yield
        finally:
            self.unregister(observer)

    def record(
        self,
        name: str,
        payload: Metadata | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> ServiceEvent:
        """Create an event in this recorder's namespace and notify observers."""
        event = ServiceEvent(
            timestamp=timestamp or datetime.now(timezone.utc).replace(tzinfo=None),
            service=self.service,
            name=name,
            payload=dict(payload or {}),
        )
        self.emit(event)
        return event

    def emit(self, event: ServiceEvent) -> None:
        """Forward an existing event to observers."""
        with self._lock:
            observers = tuple(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception:
                # A failing observer must not break shard processing.
                LOGGER.debug("Event observer %r failed for %s", observer, event.name, exc_info=True)

    @contextmanager
    def span(self, name: str, payload: Metadata | None = None) -> Iterator[Metadata]:
        """Record ``{name}.start`` and then ``{name}.complete`` or ``{name}.error``.

        The yielded dictionary is merged into the completion payload, so callers
        can attach counts discovered while the block runs.
        """
        base = dict(payload or {})
        extra: Metadata = {}
        self.record(f"{name}.start", base)
        started = time.perf_counter()
        try:
            yield extra
        except Exception as exc:
            self.record(
                f"{name}.error",
                {**base, **extra, "error": str(exc), "elapsed_ms": _elapsed_ms(started)},
            )
            raise
        self.record(f"{name}.complete", {**base, **extra, "elapsed_ms": _elapsed_ms(started)})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


_GLOBAL_RECORDER = EventRecorder()


def get_event_recorder(service: Sequence[str] | str | None = None) -> EventRecorder:
    """Return the global event recorder or a scoped variant."""
    if service is None:
        return _GLOBAL_RECORDER
    return _GLOBAL_RECORDER.scoped(service)


def set_event_recorder(recorder: EventRecorder) -> None:
    """Replace the global event recorder."""
    global _GLOBAL_RECORDER
    _GLOBAL_RECORDER = recorder


def reset_event_recorder() -> None:
    """Reset the global recorder to a clean instance."""
    set_event_recorder(EventRecorder())
