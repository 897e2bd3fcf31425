"""
Course Calendar Rules
=====================

Pure functions that classify "now" relative to the course window and the
individual class dates.

Every function takes the current instant as an explicit argument. The
instant is converted to the civil date in the calendar's time zone and
only civil dates are compared, so a visitor at 23:59 and one at 00:01 on
the same New York day always see the same page.

Rules
-----
- BEFORE: today < start date
- DURING: start date <= today <= end date (both ends inclusive)
- AFTER:  today > end date
- A class is past once today is strictly after its date, and "today"
  when the dates are equal.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone as dt_timezone
from enum import Enum
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


class Phase(str, Enum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"


class ClassStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE_TODAY = "live-today"
    PAST = "past"


@dataclass(frozen=True)
class CourseCalendar:
    """
    Start/end dates and the ordered class dates of a course, anchored to
    one IANA time zone.

    Raises:
        ValueError: if class dates are out of order or outside [start, end].
    """

    start: date
    end: date
    class_dates: Tuple[date, ...]
    time_zone: str = "America/New_York"

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Course start date must not be after the end date.")
        previous = self.start
        for class_date in self.class_dates:
            if class_date < previous:
                raise ValueError(
                    f"Class dates must be non-decreasing and not before the start ({class_date})."
                )
            if class_date > self.end:
                raise ValueError(f"Class date {class_date} is after the course end.")
            previous = class_date
        # validate the zone name eagerly
        ZoneInfo(self.time_zone)

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.time_zone)

    @property
    def class_count(self) -> int:
        return len(self.class_dates)


def local_now(now: datetime, calendar: CourseCalendar) -> datetime:
    """Convert an instant to the calendar's time zone. Naive values are taken as UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=dt_timezone.utc)
    return now.astimezone(calendar.zone)


def local_date(now: datetime, calendar: CourseCalendar) -> date:
    return local_now(now, calendar).date()


def course_phase(now: datetime, calendar: CourseCalendar) -> Phase:
    today = local_date(now, calendar)
    if today < calendar.start:
        return Phase.BEFORE
    if today > calendar.end:
        return Phase.AFTER
    return Phase.DURING


def is_before_course(now: datetime, calendar: CourseCalendar) -> bool:
    return course_phase(now, calendar) is Phase.BEFORE


def is_during_course(now: datetime, calendar: CourseCalendar) -> bool:
    return course_phase(now, calendar) is Phase.DURING


def is_after_course(now: datetime, calendar: CourseCalendar) -> bool:
    return course_phase(now, calendar) is Phase.AFTER


def current_class_index(now: datetime, calendar: CourseCalendar) -> Optional[int]:
    """
    Index of the class happening today or the next upcoming one.

    Returns:
        0-based index, or None once every class date has passed.
    """
    today = local_date(now, calendar)
    for index, class_date in enumerate(calendar.class_dates):
        if today <= class_date:
            return index
    return None


def _class_date(calendar: CourseCalendar, index: int) -> date:
    if not 0 <= index < calendar.class_count:
        raise IndexError(f"No class with index {index}.")
    return calendar.class_dates[index]


def is_class_past(now: datetime, calendar: CourseCalendar, index: int) -> bool:
    return local_date(now, calendar) > _class_date(calendar, index)


def is_class_today(now: datetime, calendar: CourseCalendar, index: int) -> bool:
    return local_date(now, calendar) == _class_date(calendar, index)


def class_status(now: datetime, calendar: CourseCalendar, index: int) -> ClassStatus:
    if is_class_past(now, calendar, index):
        return ClassStatus.PAST
    if is_class_today(now, calendar, index):
        return ClassStatus.LIVE_TODAY
    return ClassStatus.UPCOMING


def days_until_start(now: datetime, calendar: CourseCalendar) -> int:
    """Whole civil days until the first class; 0 once the course has started."""
    delta = (calendar.start - local_date(now, calendar)).days
    return max(delta, 0)
