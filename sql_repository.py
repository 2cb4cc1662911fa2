from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import RLock, local
from typing import Iterator, List, Optional

from sqlalchemy import Column, DateTime, Index, String, create_engine, event, func
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from models import Booking, OverlapScope, to_utc
from repository import BookingRepository, StoreFailure, new_booking_id

logger = logging.getLogger(__name__)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            value = to_utc(value).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class BookingRow(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_position_window", "position", "from_date", "to_date"),
        Index("ix_bookings_owner_window", "owner", "from_date", "to_date"),
    )

    id = Column(String(40), primary_key=True)
    position = Column(String, nullable=False)
    start_utc = Column("from_date", UTCDateTime, nullable=False)
    end_utc = Column("to_date", UTCDateTime, nullable=False)
    owner = Column(String, nullable=False)

    def to_booking(self) -> Booking:
        return Booking(
            booking_id=self.id,
            position=self.position,
            start_utc=self.start_utc,
            end_utc=self.end_utc,
            owner=self.owner,
        )


def _use_immediate_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so overlap checks in other processes wait for the pending insert.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class SqlAlchemyBookingRepository(BookingRepository):
    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        if engine.dialect.name == "sqlite":
            _use_immediate_transactions(engine)
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._lock = RLock()
        self._local = local()
        try:
            Base.metadata.create_all(engine)
        except SQLAlchemyError as exc:
            raise self._failure("create schema", exc) from exc

    @classmethod
    def from_url(cls, database_url: str) -> "SqlAlchemyBookingRepository":
        url = make_url(database_url)
        options = {}
        if url.get_backend_name() == "sqlite":
            options["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:") or url.query.get("mode") == "memory":
                # One shared connection, otherwise each thread gets its own empty database.
                options["poolclass"] = StaticPool
        return cls(create_engine(url, **options))

    @staticmethod
    def _failure(action: str, exc: SQLAlchemyError) -> StoreFailure:
        logger.error("Booking store failed to %s: %s", action, exc)
        return StoreFailure(f"booking store failed to {action}")

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            if getattr(self._local, "session", None) is not None:
                yield
                return
            try:
                with self._session_factory() as session, session.begin():
                    if self._engine.dialect.name != "sqlite":
                        session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
                    self._local.session = session
                    try:
                        yield
                    finally:
                        self._local.session = None
            except SQLAlchemyError as exc:
                raise self._failure("commit", exc) from exc

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        current = getattr(self._local, "session", None)
        try:
            if current is not None:
                yield current
            else:
                with self._session_factory() as session, session.begin():
                    yield session
        except SQLAlchemyError as exc:
            raise self._failure(action, exc) from exc

    def insert(self, position: str, start_utc: datetime, end_utc: datetime, owner: str) -> str:
        booking_id = new_booking_id()
        with self._session("insert booking") as session:
            session.add(
                BookingRow(
                    id=booking_id,
                    position=position,
                    start_utc=start_utc,
                    end_utc=end_utc,
                    owner=owner,
                )
            )
        return booking_id

    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        with self._session("load booking") as session:
            row = session.get(BookingRow, booking_id)
            return row.to_booking() if row is not None else None

    def update(self, booking_id: str, *, position: str, start_utc: datetime, end_utc: datetime) -> None:
        with self._session("update booking") as session:
            row = session.get(BookingRow, booking_id)
            if row is None:
                raise StoreFailure(f"booking {booking_id} vanished before update")
            row.position = position
            row.start_utc = start_utc
            row.end_utc = end_utc

    def delete(self, booking_id: str) -> bool:
        with self._session("delete booking") as session:
            row = session.get(BookingRow, booking_id)
            if row is None:
                return False
            session.delete(row)
            return True

    def count_overlapping(
        self,
        scope: OverlapScope,
        value: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> int:
        column = BookingRow.position if OverlapScope(scope) is OverlapScope.POSITION else BookingRow.owner
        with self._session("count overlapping bookings") as session:
            query = session.query(func.count(BookingRow.id)).filter(
                column == value,
                BookingRow.start_utc < end_utc,
                BookingRow.end_utc > start_utc,
            )
            if exclude_id is not None:
                query = query.filter(BookingRow.id != exclude_id)
            return query.scalar() or 0

    def list_future(self, now: datetime) -> List[Booking]:
        with self._session("list future bookings") as session:
            rows = (
                session.query(BookingRow)
                .filter(BookingRow.end_utc > now)
                .order_by(BookingRow.position.asc(), BookingRow.start_utc.asc())
                .all()
            )
            return [row.to_booking() for row in rows]

    def list_intersecting_day(self, day_start: datetime, day_end: datetime) -> List[Booking]:
        with self._session("list bookings for day") as session:
            rows = (
                session.query(BookingRow)
                .filter(BookingRow.start_utc <= day_end, BookingRow.end_utc >= day_start)
                .order_by(BookingRow.position.asc(), BookingRow.start_utc.asc())
                .all()
            )
            return [row.to_booking() for row in rows]

    def reset(self) -> None:
        """Clear all bookings. For testing only."""
        with self._session("reset bookings") as session:
            session.query(BookingRow).delete()
