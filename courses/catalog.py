"""
Course Catalog
==============

Static configuration for the "Reiki Expansion & Reactivation" course:
the five classes, the bundle, the Re-Attunement add-on and the course
calendar. Loaded once at import and never mutated.

All prices are integer cents (USD).
"""

from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Tuple

from django.conf import settings

from .calendar import CourseCalendar


@dataclass(frozen=True)
class Course:
    id: str
    title: str
    description: str
    date: str  # display date ("March 18"), year comes from the calendar
    price: int


@dataclass(frozen=True)
class AddOn:
    id: str
    title: str
    price: int


COURSE_TITLE = "Reiki Expansion & Reactivation"
COURSE_SUBTITLE = "A Five-Part Immersive Course"
COURSE_DESCRIPTION = (
    "Go Beyond Traditional Reiki—Integrate Chakra Alignment & the Pendulum "
    "into Your Practice."
)

COURSES: Tuple[Course, ...] = (
    Course(
        id="class-1",
        title="Chakra Alignment Technique for Self-Healing",
        description=(
            "You'll learn and practice a structured chakra balancing method for "
            "self-Reiki that starts from the feet and ends at the head."
        ),
        date="March 18",
        price=9500,
    ),
    Course(
        id="class-2",
        title="Opening & Sealing Technique with Crystals",
        description=(
            "You'll learn and practice the opening & sealing technique, the Chakra "
            "Mapping Form, and crystals to expand your remote Reiki practice."
        ),
        date="March 20",
        price=9500,
    ),
    Course(
        id="class-3",
        title="Energy Measurement with Pendulum",
        description=(
            "You'll learn and practice using the pendulum for self-treatment, "
            "combining it with Reiki for deeper energy alignment."
        ),
        date="March 25",
        price=9500,
    ),
    Course(
        id="class-4",
        title="Energy & Space Clearing",
        description=(
            "You'll learn and practice integrating Reiki symbols, mantras, and the "
            "pendulum to clear and bless your energy and space."
        ),
        date="March 27",
        price=9500,
    ),
    Course(
        id="class-5",
        title="Complete Home & Self Clearing",
        description=(
            "You'll learn and practice measuring, clearing, and blessing your entire "
            "home—including all rooms and surroundings—using Reiki, the pendulum, "
            "salt, palo santo, sage, and sound."
        ),
        date="April 1",
        price=9500,
    ),
)

BUNDLE_ID = "bundle"
BUNDLE_PRICE = 39500
BUNDLE_ITEM_NAME = f"{COURSE_TITLE}: {COURSE_SUBTITLE}"

# Price of a class once its live date has passed
RECORDING_PRICE = 7500

REATTUNEMENT = AddOn(
    id="reattunement",
    title="Private Reiki Re-Attunement with Michal",
    price=9700,
)

COURSE_CALENDAR = CourseCalendar(
    start=date(2025, 3, 18),
    end=date(2025, 4, 1),
    class_dates=(
        date(2025, 3, 18),
        date(2025, 3, 20),
        date(2025, 3, 25),
        date(2025, 3, 27),
        date(2025, 4, 1),
    ),
    time_zone=getattr(settings, "COURSE_TIME_ZONE", "America/New_York"),
)

_COURSES_BY_ID: Dict[str, Course] = {course.id: course for course in COURSES}


def get_course(course_id: str) -> Optional[Course]:
    return _COURSES_BY_ID.get(course_id)


def course_index(course_id: str) -> int:
    """Position of a course in the catalog (matches the calendar's class index)."""
    return COURSES.index(_COURSES_BY_ID[course_id])


def individual_total() -> int:
    """Sum of the full per-class prices, i.e. what the bundle is compared against."""
    return sum(course.price for course in COURSES)


def bundle_savings() -> int:
    return individual_total() - BUNDLE_PRICE
