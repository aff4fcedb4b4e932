"""SQLAlchemy-backed TimelineStore (SQLite by default, any SQLAlchemy URL)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    and_,
    create_engine,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..config import TIMELINE_DATABASE_URL
from ..errors import StorageError
from ..geocoding.cache import utc_now
from ..models import CacheEntry, LatLng, Place, Segment, Stop
from ..utils import to_utc_aware
from .base import QueueKey

LOGGER = logging.getLogger(__name__)

Base = declarative_base()

# Keeps each bulk_get statement well under SQLite's bound-parameter limit.
_BULK_GET_CHUNK = 200


class CacheEntryRow(Base):
    __tablename__ = "geocode_cache"

    id = Column(Integer, primary_key=True)
    lat_rounded = Column(Float, nullable=False)
    lng_rounded = Column(Float, nullable=False)
    city = Column(String)
    state = Column(String)
    country = Column(String)
    address = Column(Text)
    cached_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("lat_rounded", "lng_rounded", name="uq_geocode_cache_bucket"),
    )

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            lat_rounded=self.lat_rounded,
            lng_rounded=self.lng_rounded,
            city=self.city,
            state=self.state,
            country=self.country,
            address=self.address,
            cached_at=to_utc_aware(self.cached_at) if self.cached_at else None,
        )


class StopRow(Base):
    __tablename__ = "stops"

    stop_id = Column(String, primary_key=True)
    start = Column(DateTime(timezone=True), nullable=False, index=True)
    end = Column(DateTime(timezone=True), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    point_count = Column(Integer, nullable=False)
    max_member_distance_m = Column(Float, nullable=False, default=0.0)
    city = Column(String)
    state = Column(String)
    country = Column(String, index=True)
    address = Column(Text)

    @classmethod
    def from_stop(cls, stop: Stop) -> "StopRow":
        return cls(
            stop_id=stop.stop_id,
            start=to_utc_aware(stop.start),
            end=to_utc_aware(stop.end),
            latitude=stop.latitude,
            longitude=stop.longitude,
            point_count=stop.point_count,
            max_member_distance_m=stop.max_member_distance_m,
            city=stop.city,
            state=stop.state,
            country=stop.country,
            address=stop.address,
        )

    def to_stop(self) -> Stop:
        return Stop(
            stop_id=self.stop_id,
            start=to_utc_aware(self.start),
            end=to_utc_aware(self.end),
            latitude=self.latitude,
            longitude=self.longitude,
            point_count=self.point_count,
            max_member_distance_m=self.max_member_distance_m or 0.0,
            city=self.city,
            state=self.state,
            country=self.country,
            address=self.address,
        )


class SegmentRow(Base):
    __tablename__ = "segments"

    id = Column(Integer, primary_key=True)
    from_stop_id = Column(String, nullable=False)
    to_stop_id = Column(String, nullable=False)
    start = Column(DateTime(timezone=True), nullable=False)
    end = Column(DateTime(timezone=True), nullable=False)
    distance_miles = Column(Float, nullable=False)
    cities = Column(JSON, nullable=False, default=list)

    __table_args__ = (Index("idx_segments_start", "start"),)

    @classmethod
    def from_segment(cls, segment: Segment) -> "SegmentRow":
        return cls(
            from_stop_id=segment.from_stop_id,
            to_stop_id=segment.to_stop_id,
            start=to_utc_aware(segment.start),
            end=to_utc_aware(segment.end),
            distance_miles=segment.distance_miles,
            cities=list(segment.cities),
        )

    def to_segment(self) -> Segment:
        return Segment(
            from_stop_id=self.from_stop_id,
            to_stop_id=self.to_stop_id,
            start=to_utc_aware(self.start),
            end=to_utc_aware(self.end),
            distance_miles=self.distance_miles,
            cities=tuple(self.cities or ()),
        )


def _unresolved_clause():
    return or_(StopRow.country.is_(None), func.trim(StopRow.country) == "")


class SqlTimelineStore:
    """Persist stops, segments and the geocode cache through SQLAlchemy.

    Datetimes are written as UTC and always read back timezone-aware.
    Database errors surface as :class:`StorageError`.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        clock: Callable[[], datetime] = utc_now,
        create_schema: bool = True,
    ) -> None:
        self._clock = clock
        try:
            self.engine = engine or create_engine(url or TIMELINE_DATABASE_URL)
            if create_schema:
                Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot open timeline database: {exc}") from exc
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageError(f"Database operation failed: {exc}") from exc
        finally:
            session.close()

    # Geocode cache -----------------------------------------------------

    def _apply_entry(self, session: Session, entry: CacheEntry, stamp: datetime) -> None:
        row = session.execute(
            select(CacheEntryRow).where(
                CacheEntryRow.lat_rounded == entry.lat_rounded,
                CacheEntryRow.lng_rounded == entry.lng_rounded,
            )
        ).scalar_one_or_none()
        if row is None:
            row = CacheEntryRow(lat_rounded=entry.lat_rounded, lng_rounded=entry.lng_rounded)
            session.add(row)
        row.city = entry.city
        row.state = entry.state
        row.country = entry.country
        row.address = entry.address
        row.cached_at = stamp

    def upsert_cache_entry(self, entry: CacheEntry) -> CacheEntry:
        stamp = self._clock()
        try:
            with self._session() as session:
                self._apply_entry(session, entry, stamp)
        except IntegrityError:
            # Another writer inserted the bucket first; overwrite it.
            LOGGER.debug("Concurrent insert for bucket %s; retrying as update", entry.key)
            try:
                with self._session() as session:
                    self._apply_entry(session, entry, stamp)
            except IntegrityError as exc:
                raise StorageError(f"Could not upsert bucket {entry.key}: {exc}") from exc
        return replace(entry, cached_at=stamp)

    upsert = upsert_cache_entry

    def bulk_get(self, keys: Iterable[LatLng]) -> Dict[LatLng, CacheEntry]:
        wanted = list(dict.fromkeys(keys))
        found: Dict[LatLng, CacheEntry] = {}
        with self._session() as session:
            for offset in range(0, len(wanted), _BULK_GET_CHUNK):
                chunk = wanted[offset : offset + _BULK_GET_CHUNK]
                clause = or_(
                    *(
                        and_(
                            CacheEntryRow.lat_rounded == lat,
                            CacheEntryRow.lng_rounded == lng,
                        )
                        for lat, lng in chunk
                    )
                )
                for row in session.execute(select(CacheEntryRow).where(clause)).scalars():
                    entry = row.to_entry()
                    found[entry.key] = entry
        return found

    # Stops and segments -------------------------------------------------

    def bulk_insert_stops(self, stops: Sequence[Stop]) -> int:
        if not stops:
            return 0
        self.save_timeline(stops, ())
        return len(stops)

    def bulk_insert_segments(self, segments: Sequence[Segment]) -> int:
        if not segments:
            return 0
        self.save_timeline((), segments)
        return len(segments)

    def save_timeline(self, stops: Sequence[Stop], segments: Sequence[Segment]) -> None:
        """Insert stops and segments in one transaction."""

        try:
            with self._session() as session:
                session.add_all(StopRow.from_stop(stop) for stop in stops)
                session.add_all(SegmentRow.from_segment(segment) for segment in segments)
        except IntegrityError as exc:
            raise StorageError(f"Rejected timeline write: {exc.orig}") from exc
        LOGGER.debug("Inserted %d stops and %d segments", len(stops), len(segments))

    def stops_in_range(self, start: datetime, end: datetime) -> List[Stop]:
        stmt = (
            select(StopRow)
            .where(StopRow.start >= to_utc_aware(start), StopRow.start <= to_utc_aware(end))
            .order_by(StopRow.start)
        )
        with self._session() as session:
            return [row.to_stop() for row in session.execute(stmt).scalars()]

    def segments_in_range(self, start: datetime, end: datetime) -> List[Segment]:
        stmt = (
            select(SegmentRow)
            .where(
                SegmentRow.start >= to_utc_aware(start),
                SegmentRow.start <= to_utc_aware(end),
            )
            .order_by(SegmentRow.start, SegmentRow.id)
        )
        with self._session() as session:
            return [row.to_segment() for row in session.execute(stmt).scalars()]

    def count_unresolved_stops(self) -> int:
        stmt = select(func.count()).select_from(StopRow).where(_unresolved_clause())
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    def list_unresolved_stops(
        self, limit: int, after: Optional[QueueKey] = None
    ) -> List[Stop]:
        stmt = select(StopRow).where(_unresolved_clause())
        if after is not None:
            after_start, after_id = to_utc_aware(after[0]), after[1]
            stmt = stmt.where(
                or_(
                    StopRow.start > after_start,
                    and_(StopRow.start == after_start, StopRow.stop_id > after_id),
                )
            )
        stmt = stmt.order_by(StopRow.start, StopRow.stop_id).limit(max(0, limit))
        with self._session() as session:
            return [row.to_stop() for row in session.execute(stmt).scalars()]

    def update_stop_place(self, stop_id: str, place: Place) -> bool:
        if place.is_empty:
            return False
        try:
            with self._session() as session:
                row = session.get(StopRow, stop_id)
                if row is None:
                    return False
                row.city = place.city
                row.state = place.state
                row.country = place.country
                row.address = place.address
        except IntegrityError as exc:
            raise StorageError(f"Could not update stop {stop_id}: {exc.orig}") from exc
        return True


__all__ = ["Base", "CacheEntryRow", "SegmentRow", "SqlTimelineStore", "StopRow"]
