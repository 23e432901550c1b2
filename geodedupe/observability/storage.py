"""SQLAlchemy event log for comparison and indexing runs.

Events are appended to a ``dedupe_events`` table. Shard events carry their
geohash in a dedicated indexed column so failed shards of a long run can be
listed and re-run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, String, create_engine, distinct, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from geodedupe.observability.events import EventObserver, EventRecorder, ServiceEvent

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class EventRow(Base):
    __tablename__ = "dedupe_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    service: Mapped[str] = mapped_column(String, index=True)
    name: Mapped[str] = mapped_column(String, index=True)
    geohash: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)

    @classmethod
    def from_event(cls, event: ServiceEvent) -> "EventRow":
        geohash = event.payload.get("geohash")
        return cls(
            recorded_at=event.timestamp,
            service=event.service,
            name=event.name,
            geohash=str(geohash) if geohash is not None else None,
            payload=dict(event.payload),
        )

    def to_event(self) -> ServiceEvent:
        return ServiceEvent(
            timestamp=self.recorded_at,
            service=self.service,
            name=self.name,
            payload=dict(self.payload or {}),
        )


class EventLogStore:
    """Persist :class:`ServiceEvent` values to a SQLAlchemy database."""

    def __init__(self, database_url: str) -> None:
        self._engine = create_engine(database_url, future=True)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        Base.metadata.create_all(self._engine)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def persist_events(self, events: Sequence[ServiceEvent]) -> None:
        if not events:
            return
        with self._session() as session:
            session.add_all([EventRow.from_event(event) for event in events])

    def fetch_events(
        self,
        *,
        service: str | None = None,
        name: str | None = None,
        geohash: str | None = None,
        limit: int | None = None,
    ) -> list[ServiceEvent]:
        """Return stored events oldest first, optionally filtered."""
        stmt = select(EventRow).order_by(EventRow.recorded_at, EventRow.id)
        if service is not None:
            stmt = stmt.where(EventRow.service == service)
        if name is not None:
            stmt = stmt.where(EventRow.name == name)
        if geohash is not None:
            stmt = stmt.where(EventRow.geohash == geohash)
        if limit:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [row.to_event() for row in session.execute(stmt).scalars()]

    def failed_shards(self) -> list[str]:
        """Return the geohashes of every shard that recorded a ``match.error``."""
        stmt = (
            select(distinct(EventRow.geohash))
            .where(EventRow.name == "match.error", EventRow.geohash.is_not(None))
            .order_by(EventRow.geohash)
        )
        with self._session() as session:
            return list(session.execute(stmt).scalars())

    def observer(self) -> EventObserver:
        """Return an observer writing each event as it is recorded."""

        def _persist(event: ServiceEvent) -> None:
            try:
                self.persist_events([event])
            except Exception:
                LOGGER.warning("Could not persist event %s.%s", event.service, event.name, exc_info=True)

        return _persist

    def close(self) -> None:
        self._engine.dispose()


def attach_persistent_observer(
    recorder: EventRecorder,
    store: EventLogStore,
) -> Callable[[], None]:
    """Register ``store`` on ``recorder`` and return a callable that detaches it."""
    observer = store.observer()
    recorder.register(observer)
    return lambda: recorder.unregister(observer)
