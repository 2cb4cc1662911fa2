from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Type

from fastapi import APIRouter, HTTPException, Path, Request, status

from models import BookingOut, CreateBookingIn, DeleteOut, UpdateBookingIn
from repository import StoreFailure
from services import (
    BookingNotFoundError,
    BookingService,
    BookingTooShortError,
    ForbiddenError,
    InvalidDateError,
    InvalidTemporalInputError,
    InvalidWindowError,
    MissingOwnerError,
    OwnerOverlapError,
    PositionOverlapError,
)


# Most specific classes first: BookingTooShortError is an InvalidWindowError.
_ERROR_RESPONSES: Dict[Type[Exception], Tuple[int, str]] = {
    BookingTooShortError: (
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "Validation error: booking is shorter than the minimum duration.",
    ),
    InvalidTemporalInputError: (
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "Validation error: fromDate and toDate must be ISO-8601 timestamps with timezone.",
    ),
    InvalidWindowError: (
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "Validation error: fromDate must be before toDate.",
    ),
    InvalidDateError: (
        status.HTTP_422_UNPROCESSABLE_CONTENT,
        "Validation error: invalid date.",
    ),
    MissingOwnerError: (
        status.HTTP_400_BAD_REQUEST,
        "Missing owner header.",
    ),
    OwnerOverlapError: (
        status.HTTP_409_CONFLICT,
        "Overlap conflict: owner already has a booking in this interval.",
    ),
    PositionOverlapError: (
        status.HTTP_409_CONFLICT,
        "Overlap conflict: position already booked in this interval.",
    ),
    BookingNotFoundError: (
        status.HTTP_404_NOT_FOUND,
        "Booking not found.",
    ),
    ForbiddenError: (
        status.HTTP_403_FORBIDDEN,
        "Not your booking.",
    ),
    StoreFailure: (
        status.HTTP_503_SERVICE_UNAVAILABLE,
        "Booking store unavailable, try again later.",
    ),
}


def to_http_exception(exc: Exception) -> HTTPException:
    for error_type, (status_code, detail) in _ERROR_RESPONSES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=detail)
    raise exc


def create_router(service: BookingService, owner_header: str = "ivao-vid") -> APIRouter:
    router = APIRouter()
    handled = tuple(_ERROR_RESPONSES)

    def caller(request: Request) -> Optional[str]:
        # Caller identity travels out of band, never in the booking body.
        return request.headers.get(owner_header)

    @router.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @router.get("/bookings/future", response_model=List[BookingOut])
    def list_future_bookings() -> List[BookingOut]:
        try:
            return service.list_future_bookings()
        except handled as exc:
            raise to_http_exception(exc)

    @router.get("/bookings/date/{day}", response_model=List[BookingOut])
    def list_bookings_for_date(day: str = Path(..., min_length=1)) -> List[BookingOut]:
        try:
            return service.list_bookings_for_date(day)
        except handled as exc:
            raise to_http_exception(exc)

    @router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
    def create_booking(payload: CreateBookingIn, request: Request) -> BookingOut:
        try:
            return service.create_booking(payload, caller(request))
        except handled as exc:
            raise to_http_exception(exc)

    @router.put("/bookings/{booking_id}", response_model=BookingOut)
    def update_booking(
        payload: UpdateBookingIn,
        request: Request,
        booking_id: str = Path(..., min_length=1),
    ) -> BookingOut:
        try:
            return service.update_booking(booking_id, payload, caller(request))
        except handled as exc:
            raise to_http_exception(exc)

    @router.delete("/bookings/{booking_id}", response_model=DeleteOut)
    def delete_booking(request: Request, booking_id: str = Path(..., min_length=1)) -> DeleteOut:
        try:
            return service.delete_booking(booking_id, caller(request))
        except handled as exc:
            raise to_http_exception(exc)

    return router
