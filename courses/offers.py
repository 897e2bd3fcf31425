"""
Offer Selector
==============

Decides what the checkout front-end shows for a given day and prices the
buyer's selection.

Page routing
------------
- Before the course: /checkout/full   → bundle + individual class selector
- During the course: /checkout/live/class-N → page focused on the class
  happening today or next
- After the course (or once every class has passed): /checkout/closed

Pricing
-------
- Selecting every class (or the ``bundle`` id) is priced as the bundle.
- Otherwise each class costs its full price until its date has passed,
  then the recording price.
- The Re-Attunement add-on is added on top.
- Split payments are only offered for the bundle.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from core.exceptions import InvalidSelectionError

from . import calendar as rules
from .calendar import ClassStatus, CourseCalendar, Phase
from .catalog import (
    BUNDLE_ID,
    BUNDLE_ITEM_NAME,
    BUNDLE_PRICE,
    COURSE_CALENDAR,
    COURSE_DESCRIPTION,
    COURSE_SUBTITLE,
    COURSE_TITLE,
    COURSES,
    RECORDING_PRICE,
    REATTUNEMENT,
    Course,
    bundle_savings,
    course_index,
    get_course,
    individual_total,
)
from .payment_plans import MAX_INSTALLMENTS, PaymentPlan, build_payment_plan

logger = logging.getLogger(__name__)

FULL_PAGE = "/checkout/full"
CLOSED_PAGE = "/checkout/closed"

_CLASS_LABELS = {
    ClassStatus.UPCOMING: "Join Live",
    ClassStatus.LIVE_TODAY: "Join Live Today!",
    ClassStatus.PAST: "Recording Available",
}


def class_page_path(index: int) -> str:
    return f"/checkout/live/class-{index + 1}"


@dataclass(frozen=True)
class ClassOffer:
    index: int
    course: Course
    class_date: date
    status: ClassStatus
    price: int

    @property
    def label(self) -> str:
        return _CLASS_LABELS[self.status]

    @property
    def is_recording(self) -> bool:
        return self.status is ClassStatus.PAST

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.course.id,
            "number": self.index + 1,
            "title": self.course.title,
            "description": self.course.description,
            "date": self.course.date,
            "class_date": self.class_date.isoformat(),
            "status": self.status.value,
            "label": self.label,
            "price": self.price,
            "full_price": self.course.price,
            "is_recording": self.is_recording,
            "path": class_page_path(self.index),
        }


@dataclass(frozen=True)
class LineItem:
    id: str
    name: str
    price: int

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "price": self.price}


@dataclass(frozen=True)
class PricedSelection:
    course_ids: Tuple[str, ...]
    include_reattunement: bool
    is_bundle: bool
    items: Tuple[LineItem, ...]

    @property
    def total(self) -> int:
        return sum(item.price for item in self.items)

    def manifest(self) -> List[Dict[str, Any]]:
        """Item list in the ``{"name", "price"}`` shape sent to Stripe metadata and Make.com."""
        return [{"name": item.name, "price": item.price} for item in self.items]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "courses": list(self.course_ids),
            "include_reattunement": self.include_reattunement,
            "is_bundle": self.is_bundle,
            "items": [item.as_dict() for item in self.items],
            "total": self.total,
        }


# ---------- class offers ----------


def class_offer(
    now: datetime, index: int, calendar: CourseCalendar = COURSE_CALENDAR
) -> ClassOffer:
    status = rules.class_status(now, calendar, index)
    course = COURSES[index]
    price = RECORDING_PRICE if status is ClassStatus.PAST else course.price
    return ClassOffer(
        index=index,
        course=course,
        class_date=calendar.class_dates[index],
        status=status,
        price=price,
    )


def class_offers(now: datetime, calendar: CourseCalendar = COURSE_CALENDAR) -> List[ClassOffer]:
    return [class_offer(now, index, calendar) for index in range(len(COURSES))]


def bundle_offer() -> Dict[str, Any]:
    return {
        "id": BUNDLE_ID,
        "title": BUNDLE_ITEM_NAME,
        "price": BUNDLE_PRICE,
        "individual_total": individual_total(),
        "savings": bundle_savings(),
    }


def reattunement_offer() -> Dict[str, Any]:
    return {"id": REATTUNEMENT.id, "title": REATTUNEMENT.title, "price": REATTUNEMENT.price}


# ---------- routing ----------


def checkout_route(now: datetime, calendar: CourseCalendar = COURSE_CALENDAR) -> Dict[str, Any]:
    """Which checkout page to send a visitor to right now."""
    phase = rules.course_phase(now, calendar)
    class_index = rules.current_class_index(now, calendar)

    if phase is Phase.BEFORE:
        redirect = FULL_PAGE
    elif phase is Phase.DURING and class_index is not None:
        redirect = class_page_path(class_index)
    else:
        redirect = CLOSED_PAGE

    return {
        "phase": phase.value,
        "redirect": redirect,
        "current_class_index": class_index,
    }


def landing_offer(now: datetime, calendar: CourseCalendar = COURSE_CALENDAR) -> Dict[str, Any]:
    route = checkout_route(now, calendar)
    phase = Phase(route["phase"])
    offer: Dict[str, Any] = {
        "phase": phase.value,
        "page": route["redirect"],
        "title": COURSE_TITLE,
        "subtitle": COURSE_SUBTITLE,
        "description": COURSE_DESCRIPTION,
    }

    if route["redirect"] == CLOSED_PAGE:
        offer.update(
            {
                "page_type": "closed",
                "message": f"The {COURSE_TITLE} {COURSE_SUBTITLE} has concluded.",
                "course_start": calendar.start.isoformat(),
                "course_end": calendar.end.isoformat(),
                "offers_available": False,
            }
        )
        return offer

    offer.update(
        {
            "offers_available": True,
            "bundle": bundle_offer(),
            "classes": [o.as_dict() for o in class_offers(now, calendar)],
            "reattunement": reattunement_offer(),
        }
    )
    if phase is Phase.BEFORE:
        offer["page_type"] = "full"
        offer["days_until_start"] = rules.days_until_start(now, calendar)
    else:
        current = class_offer(now, route["current_class_index"], calendar)
        offer["page_type"] = "live"
        offer["current_class"] = current.as_dict()
    return offer


def class_page(
    now: datetime, number: int, calendar: CourseCalendar = COURSE_CALENDAR
) -> Optional[Dict[str, Any]]:
    """
    Live page for one class (1-based ``number``).

    A past class that is earlier than the current class redirects to the
    current class page. Returns None for an unknown class number.
    """
    index = number - 1
    if not 0 <= index < len(COURSES):
        return None

    offer = class_offer(now, index, calendar)
    current_index = rules.current_class_index(now, calendar)
    redirect = None
    if offer.is_recording and current_index is not None and index < current_index:
        redirect = class_page_path(current_index)

    heading = offer.course.title
    if offer.status is ClassStatus.LIVE_TODAY:
        heading = f"Join Live Today: {heading}"

    return {
        "heading": heading,
        "class": offer.as_dict(),
        "is_current_class": index == current_index,
        "redirect": redirect,
        "bundle": bundle_offer(),
        "reattunement": reattunement_offer(),
    }


# ---------- selection pricing ----------


def _normalize_course_ids(course_ids: Iterable[str]) -> Tuple[str, ...]:
    selected: List[str] = []
    for course_id in course_ids:
        if course_id == BUNDLE_ID:
            return tuple(course.id for course in COURSES)
        if get_course(course_id) is None:
            raise InvalidSelectionError(
                f"Unknown course '{course_id}'.", details={"course": course_id}
            )
        if course_id not in selected:
            selected.append(course_id)
    # catalog order keeps line items stable
    return tuple(course.id for course in COURSES if course.id in selected)


def price_selection(
    course_ids: Iterable[str],
    include_reattunement: bool,
    now: datetime,
    calendar: CourseCalendar = COURSE_CALENDAR,
) -> PricedSelection:
    """
    Price a buyer's selection for the given instant.

    Raises:
        InvalidSelectionError: unknown course id, nothing selected, or the
            course has already concluded.
    """
    if rules.course_phase(now, calendar) is Phase.AFTER:
        raise InvalidSelectionError(
            "Registration for this course has closed.", error_code="course_closed"
        )

    selected = _normalize_course_ids(course_ids)
    if not selected and not include_reattunement:
        raise InvalidSelectionError("Select at least one class or the Re-Attunement session.")

    is_bundle = len(selected) == len(COURSES)
    items: List[LineItem] = []
    if is_bundle:
        items.append(LineItem(id=BUNDLE_ID, name=BUNDLE_ITEM_NAME, price=BUNDLE_PRICE))
    else:
        for course_id in selected:
            offer = class_offer(now, course_index(course_id), calendar)
            name = offer.course.title
            if offer.is_recording:
                name = f"{name} (Recording)"
            items.append(LineItem(id=course_id, name=name, price=offer.price))

    if include_reattunement:
        items.append(
            LineItem(id=REATTUNEMENT.id, name=REATTUNEMENT.title, price=REATTUNEMENT.price)
        )

    priced = PricedSelection(
        course_ids=selected,
        include_reattunement=include_reattunement,
        is_bundle=is_bundle,
        items=tuple(items),
    )
    logger.debug("Priced selection %s → %s cents", priced.course_ids, priced.total)
    return priced


def allowed_installments(priced: PricedSelection) -> List[int]:
    if priced.is_bundle:
        return list(range(1, MAX_INSTALLMENTS + 1))
    return [1]


def payment_options(priced: PricedSelection, today: date) -> List[PaymentPlan]:
    return [build_payment_plan(priced.total, count, today) for count in allowed_installments(priced)]


def plan_for_selection(priced: PricedSelection, installments: int, today: date) -> PaymentPlan:
    """
    Raises:
        InvalidSelectionError: if the installment count is not offered for
            this selection.
    """
    if installments not in allowed_installments(priced):
        raise InvalidSelectionError(
            f"{installments} installments are not available for this selection.",
            error_code="invalid_plan",
        )
    return build_payment_plan(priced.total, installments, today)
