"""
Calendar-date helpers shared by the schedule generator, the ledgers and the statistics.

Every date that is generated, compared or used as part of a storage key is a plain
``datetime.date``; it is serialized as ``YYYY-MM-DD`` and never passes through a
timezone conversion.
"""
import calendar
from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from gradebook.config import SCHOOL_TIMEZONE


def iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def today() -> date:
    """Current calendar day at the school, independent of the server clock's zone."""
    return datetime.now(SCHOOL_TIMEZONE).date()


def to_calendar_date(value: Any) -> date:
    """
    Normalize ``value`` to a calendar date.

    A datetime keeps its own calendar day (no shift to UTC or local time) and an ISO
    string is read from its leading ``YYYY-MM-DD`` part.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) < 10:
            raise ValueError(f"Not a calendar date: {value!r}")
        return date.fromisoformat(text[:10])
    raise TypeError(f"Cannot read a calendar date from {type(value).__name__}")


def date_key(value: Any) -> str:
    return to_calendar_date(value).isoformat()


def js_weekday(day: date) -> int:
    # 0=Sunday .. 6=Saturday
    return (day.weekday() + 1) % 7


class DateRange(BaseModel):
    """Inclusive ``[start, end]`` range. An inverted range is empty, never an error."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @property
    def is_empty(self) -> bool:
        return self.start > self.end

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def intersect(self, other: "DateRange") -> "DateRange":
        return DateRange(start=max(self.start, other.start), end=min(self.end, other.end))

    def clamp_end(self, upper_bound: Optional[date]) -> "DateRange":
        if upper_bound is None or upper_bound >= self.end:
            return self
        return DateRange(start=self.start, end=upper_bound)

    @classmethod
    def month(cls, year: int, month: int) -> "DateRange":
        last_day = calendar.monthrange(year, month)[1]
        return cls(start=date(year, month, 1), end=date(year, month, last_day))
