from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from threading import RLock
from typing import Dict, Iterator, List, Optional
from uuid import uuid4

from models import Booking, OverlapScope, intervals_overlap


class StoreFailure(Exception):
    """The backing store could not complete an operation."""


def new_booking_id() -> str:
    return f"bkg_{uuid4().hex}"


class BookingRepository(ABC):
    """
    Storage contract consumed by the booking service.

    Overlap checks and the write that follows them are only safe when run
    inside ``atomic()``, which serializes them against other writers.
    """

    @abstractmethod
    def atomic(self):
        """Context manager serializing a check-then-write sequence."""

    @abstractmethod
    def insert(self, position: str, start_utc: datetime, end_utc: datetime, owner: str) -> str:
        """Store a new booking and return its id."""

    @abstractmethod
    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    def update(self, booking_id: str, *, position: str, start_utc: datetime, end_utc: datetime) -> None:
        ...

    @abstractmethod
    def delete(self, booking_id: str) -> bool:
        ...

    @abstractmethod
    def count_overlapping(
        self,
        scope: OverlapScope,
        value: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> int:
        """Count bookings in scope whose [start, end) intersects the given window."""

    @abstractmethod
    def list_future(self, now: datetime) -> List[Booking]:
        """Bookings ending after now, ordered by position then start."""

    @abstractmethod
    def list_intersecting_day(self, day_start: datetime, day_end: datetime) -> List[Booking]:
        """Bookings touching the inclusive [day_start, day_end] range, ordered by position then start."""

    @abstractmethod
    def reset(self) -> None:
        """Clear all bookings. For testing only."""


class InMemoryBookingRepository(BookingRepository):
    def __init__(self) -> None:
        self._items: Dict[str, Booking] = {}
        # Re-entrant so atomic() can wrap the other methods.
        self._lock = RLock()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            yield

    def insert(self, position: str, start_utc: datetime, end_utc: datetime, owner: str) -> str:
        booking = Booking(
            booking_id=new_booking_id(),
            position=position,
            start_utc=start_utc,
            end_utc=end_utc,
            owner=owner,
        )
        with self._lock:
            self._items[booking.booking_id] = booking
        return booking.booking_id

    def find_by_id(self, booking_id: str) -> Optional[Booking]:
        with self._lock:
            return self._items.get(booking_id)

    def update(self, booking_id: str, *, position: str, start_utc: datetime, end_utc: datetime) -> None:
        with self._lock:
            current = self._items.get(booking_id)
            if current is None:
                raise StoreFailure(f"booking {booking_id} vanished before update")
            self._items[booking_id] = replace(
                current, position=position, start_utc=start_utc, end_utc=end_utc
            )

    def delete(self, booking_id: str) -> bool:
        with self._lock:
            if booking_id not in self._items:
                return False
            del self._items[booking_id]
            return True

    def count_overlapping(
        self,
        scope: OverlapScope,
        value: str,
        start_utc: datetime,
        end_utc: datetime,
        exclude_id: Optional[str] = None,
    ) -> int:
        field = OverlapScope(scope).value
        with self._lock:
            return sum(
                1
                for b in self._items.values()
                if b.booking_id != exclude_id
                and getattr(b, field) == value
                and intervals_overlap(start_utc, end_utc, b.start_utc, b.end_utc)
            )

    def list_future(self, now: datetime) -> List[Booking]:
        with self._lock:
            items = [b for b in self._items.values() if b.end_utc > now]
        items.sort(key=Booking.sort_key)
        return items

    def list_intersecting_day(self, day_start: datetime, day_end: datetime) -> List[Booking]:
        with self._lock:
            items = [
                b for b in self._items.values()
                if b.start_utc <= day_end and b.end_utc >= day_start
            ]
        items.sort(key=Booking.sort_key)
        return items

    def reset(self) -> None:
        """Clear all bookings. For testing only."""
        with self._lock:
            self._items.clear()
