from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple, Union

from models import (
    Booking,
    BookingOut,
    CreateBookingIn,
    DeleteOut,
    OverlapScope,
    UpdateBookingIn,
    day_bounds_utc,
    parse_day,
    parse_iso8601_tz,
    to_utc,
)
from repository import BookingRepository

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for domain/service errors."""


class InvalidTemporalInputError(BookingError):
    pass


class InvalidWindowError(BookingError):
    pass


class BookingTooShortError(InvalidWindowError):
    pass


class InvalidDateError(BookingError):
    pass


class MissingOwnerError(BookingError):
    pass


class OwnerOverlapError(BookingError):
    pass


class PositionOverlapError(BookingError):
    pass


class BookingNotFoundError(BookingError):
    pass


class ForbiddenError(BookingError):
    pass


def validate_window(
    start: Union[str, datetime], end: Union[str, datetime]
) -> Tuple[datetime, datetime]:
    """
    Parse both ends of a booking window as timezone-qualified timestamps.

    Returns the pair normalized to UTC. Raises InvalidTemporalInputError if
    either end does not parse and InvalidWindowError unless start < end.
    """
    try:
        start_utc = to_utc(parse_iso8601_tz(start))
        end_utc = to_utc(parse_iso8601_tz(end))
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidTemporalInputError(str(exc)) from exc

    # Rule: start must be before end
    if not (start_utc < end_utc):
        raise InvalidWindowError()
    return start_utc, end_utc


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingService:
    def __init__(
        self,
        repo: BookingRepository,
        clock: Callable[[], datetime] = _utc_now,
        min_duration: Optional[timedelta] = None,
    ) -> None:
        self._repo = repo
        self._clock = clock
        self._min_duration = min_duration

    def list_future_bookings(self, now: Optional[datetime] = None) -> List[BookingOut]:
        if now is None:
            now = self._clock()
        if now.tzinfo is None or now.utcoffset() is None:
            # Naive values are read as UTC, never as local time.
            now = now.replace(tzinfo=timezone.utc)
        return [b.to_out() for b in self._repo.list_future(to_utc(now))]

    def list_bookings_for_date(self, day: Union[str, date]) -> List[BookingOut]:
        try:
            parsed = parse_day(day)
        except (TypeError, ValueError) as exc:
            raise InvalidDateError(str(exc)) from exc

        day_start, day_end = day_bounds_utc(parsed)
        return [b.to_out() for b in self._repo.list_intersecting_day(day_start, day_end)]

    def create_booking(self, payload: CreateBookingIn, owner: Optional[str]) -> BookingOut:
        owner = self._require_owner(owner)
        start, end = self._admissible_window(payload.from_date, payload.to_date)

        with self._repo.atomic():
            # Rule: an owner holds at most one booking at any instant
            if self._repo.count_overlapping(OverlapScope.OWNER, owner, start, end):
                self._reject("create", OverlapScope.OWNER, payload.position, owner)
                raise OwnerOverlapError()

            # Rule: bookings for the same position must not overlap
            if self._repo.count_overlapping(OverlapScope.POSITION, payload.position, start, end):
                self._reject("create", OverlapScope.POSITION, payload.position, owner)
                raise PositionOverlapError()

            booking_id = self._repo.insert(payload.position, start, end, owner)

        logger.info("Booking %s created: %s for owner %s", booking_id, payload.position, owner)
        return Booking(
            booking_id=booking_id,
            position=payload.position,
            start_utc=start,
            end_utc=end,
            owner=owner,
        ).to_out()

    def update_booking(
        self, booking_id: str, payload: UpdateBookingIn, owner: Optional[str]
    ) -> BookingOut:
        owner = self._require_owner(owner)

        with self._repo.atomic():
            current = self._owned_booking(booking_id, owner)

            position = payload.position if payload.position is not None else current.position
            start, end = self._admissible_window(
                payload.from_date if payload.from_date is not None else current.start_utc,
                payload.to_date if payload.to_date is not None else current.end_utc,
            )

            # The booking's own row never conflicts with its new window.
            if self._repo.count_overlapping(
                OverlapScope.POSITION, position, start, end, exclude_id=booking_id
            ):
                self._reject("update", OverlapScope.POSITION, position, owner)
                raise PositionOverlapError()

            if self._repo.count_overlapping(
                OverlapScope.OWNER, owner, start, end, exclude_id=booking_id
            ):
                self._reject("update", OverlapScope.OWNER, position, owner)
                raise OwnerOverlapError()

            self._repo.update(booking_id, position=position, start_utc=start, end_utc=end)

        logger.info("Booking %s updated: %s for owner %s", booking_id, position, owner)
        return Booking(
            booking_id=booking_id,
            position=position,
            start_utc=start,
            end_utc=end,
            owner=current.owner,
        ).to_out()

    def delete_booking(self, booking_id: str, owner: Optional[str]) -> DeleteOut:
        owner = self._require_owner(owner)

        with self._repo.atomic():
            self._owned_booking(booking_id, owner)
            # Cancellation is a hard delete.
            if not self._repo.delete(booking_id):
                raise BookingNotFoundError()

        logger.info("Booking %s deleted by owner %s", booking_id, owner)
        return DeleteOut(deleted=True)

    @staticmethod
    def _require_owner(owner: Optional[str]) -> str:
        if owner is None or not str(owner).strip():
            raise MissingOwnerError()
        return str(owner).strip()

    def _owned_booking(self, booking_id: str, owner: str) -> Booking:
        booking = self._repo.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundError()
        if booking.owner != owner:
            logger.warning("Owner %s may not modify booking %s", owner, booking_id)
            raise ForbiddenError()
        return booking

    def _admissible_window(
        self, start: Union[str, datetime], end: Union[str, datetime]
    ) -> Tuple[datetime, datetime]:
        start_utc, end_utc = validate_window(start, end)
        if self._min_duration is not None and end_utc - start_utc < self._min_duration:
            raise BookingTooShortError()
        return start_utc, end_utc

    @staticmethod
    def _reject(action: str, scope: OverlapScope, position: str, owner: str) -> None:
        logger.warning(
            "Rejected %s of %s for owner %s: %s overlap", action, position, owner, scope.value
        )
