from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------
# Shared time helpers
# -----------------------------
def parse_iso8601_tz(ts: Union[str, datetime]) -> datetime:
    """
    Parse ISO-8601 timestamp with timezone into an aware datetime.
    Accepts 'Z' suffix by converting it to '+00:00'.
    Aware datetime values are passed through unchanged.
    """
    if isinstance(ts, datetime):
        dt = ts
    else:
        if not isinstance(ts, str) or not ts.strip():
            raise ValueError("timestamp must be a non-empty string")

        s = ts.strip()
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"

        dt = datetime.fromisoformat(s)  # expects offset like +02:00 or +00:00

    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError("timestamp must include a timezone offset")
    return dt


def to_utc(dt: datetime) -> datetime:
    # dt is aware
    return dt.astimezone(timezone.utc)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """
    Half-open interval overlap: [start, end)
    Overlap iff a_start < b_end AND b_start < a_end.
    Back-to-back is allowed (end == other.start is NOT overlap).
    """
    return a_start < b_end and b_start < a_end


def utc_iso_z(dt: datetime) -> str:
    # dt is aware, UTC
    return dt.isoformat().replace("+00:00", "Z")


def parse_day(value: Union[str, date]) -> date:
    """Parse a calendar day given as 'YYYY-MM-DD' or a date value."""
    if isinstance(value, datetime):
        raise ValueError("expected a calendar day, not a timestamp")
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError("day must be a non-empty string")
    return date.fromisoformat(value.strip())


def day_bounds_utc(day: date) -> Tuple[datetime, datetime]:
    """
    UTC boundaries of a calendar day: 00:00:00.000 and 23:59:59.999.
    Both ends are inclusive.
    """
    day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    day_end = datetime.combine(day, time(23, 59, 59, 999000), tzinfo=timezone.utc)
    return day_start, day_end


# -----------------------------
# API models (transport layer)
# -----------------------------
class CreateBookingIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    position: str = Field(..., min_length=1)
    from_date: str = Field(..., alias="fromDate")
    to_date: str = Field(..., alias="toDate")


class UpdateBookingIn(BaseModel):
    # Omitted fields keep their stored value.
    model_config = ConfigDict(populate_by_name=True)

    position: Optional[str] = Field(None, min_length=1)
    from_date: Optional[str] = Field(None, alias="fromDate")
    to_date: Optional[str] = Field(None, alias="toDate")


class BookingOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    position: str
    from_date: str = Field(..., alias="fromDate")  # ISO-8601 UTC with Z
    to_date: str = Field(..., alias="toDate")
    owner: str


class DeleteOut(BaseModel):
    deleted: bool


# -----------------------------
# Domain model
# -----------------------------
class OverlapScope(str, Enum):
    POSITION = "position"
    OWNER = "owner"


@dataclass(frozen=True)
class Booking:
    booking_id: str
    position: str
    start_utc: datetime  # aware, UTC
    end_utc: datetime    # aware, UTC
    owner: str

    def sort_key(self) -> Tuple[str, datetime]:
        return (self.position, self.start_utc)

    def to_out(self) -> BookingOut:
        return BookingOut(
            id=self.booking_id,
            position=self.position,
            from_date=utc_iso_z(self.start_utc),
            to_date=utc_iso_z(self.end_utc),
            owner=self.owner,
        )
