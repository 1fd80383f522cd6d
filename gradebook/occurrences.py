"""
Expansion of a weekly recurrence into concrete lesson dates.

Both the editing grid (one month, nothing after today) and the semester statistics
(whole window) go through ``generate_occurrences`` so the two can never disagree:
the editing set is always the statistics set intersected with a narrower range.
"""
from datetime import date, timedelta
from typing import Iterable, List, Optional

from gradebook.dates import DateRange, js_weekday
from gradebook.models import SemesterWindow, normalize_schedule_days


def generate_occurrences(
    schedule_days: Optional[Iterable[int]],
    date_range: Optional[DateRange],
    upper_bound: Optional[date] = None,
) -> List[date]:
    """
    Every day in ``date_range`` (inclusive) whose weekday is in ``schedule_days``.

    ``upper_bound`` narrows the end of the range, it never extends it. An inverted
    range or an empty weekday set gives an empty list.
    """
    days = set(normalize_schedule_days(list(schedule_days or [])))
    if not days or date_range is None:
        return []
    effective = date_range.clamp_end(upper_bound)
    if effective.is_empty:
        return []

    occurrences = []
    current = effective.start
    while current <= effective.end:
        if js_weekday(current) in days:
            occurrences.append(current)
        current += timedelta(days=1)
    return occurrences


def semester_occurrences(schedule_days: Optional[Iterable[int]], window: Optional[SemesterWindow]) -> List[date]:
    if window is None:
        return []
    return generate_occurrences(schedule_days, window.as_range())


def editable_occurrences(
    schedule_days: Optional[Iterable[int]],
    window: Optional[SemesterWindow],
    year: int,
    month: int,
    not_after: Optional[date] = None,
) -> List[date]:
    """Lesson dates a teacher may edit for one month: inside the semester and not in the future."""
    if window is None:
        return []
    month_range = DateRange.month(year, month).intersect(window.as_range())
    return generate_occurrences(schedule_days, month_range, upper_bound=not_after)


def count_lessons(schedule_days: Optional[Iterable[int]], window: Optional[SemesterWindow]) -> int:
    return len(semester_occurrences(schedule_days, window))
