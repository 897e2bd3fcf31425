"""
Course Views
============

Read-only endpoints the marketing front-end uses to decide which page to
render and what to charge.

Endpoints
---------

1. CourseCatalogView
   - URL: /api/courses/
   - Method: GET
   - Purpose: static catalog (classes, bundle, add-on, calendar)

2. CheckoutRouteView
   - URL: /api/courses/checkout/
   - Method: GET
   - Purpose: current calendar phase and the page to redirect to

3. LandingOfferView
   - URL: /api/courses/offer/
   - Method: GET
   - Purpose: full content of the landing page for the current phase

4. ClassPageView
   - URL: /api/courses/classes/<number>/
   - Method: GET
   - Purpose: live page of one class, with redirect when it has passed

5. QuoteView
   - URL: /api/courses/quote/
   - Method: POST
   - Body: {"courses": ["class-1", ...] | ["bundle"], "include_reattunement": true}
   - Purpose: priced line items and the payment plans on offer

6. ServerTimeView
   - URL: /api/server-time/
   - Method: GET
   - Purpose: server clock and calendar booleans, for debugging
     client/server date mismatches

All endpoints are public (AllowAny). The current instant is read once per
request and passed explicitly into the calendar rules.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

import logging
from datetime import timezone as dt_timezone

from django.http import Http404
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import CheckoutError

from . import calendar as rules
from . import offers
from .catalog import (
    COURSE_CALENDAR,
    COURSE_DESCRIPTION,
    COURSE_SUBTITLE,
    COURSE_TITLE,
    COURSES,
)
from .serializers import SelectionSerializer

logger = logging.getLogger(__name__)


class CourseCatalogView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        calendar = COURSE_CALENDAR
        return Response(
            {
                "title": COURSE_TITLE,
                "subtitle": COURSE_SUBTITLE,
                "description": COURSE_DESCRIPTION,
                "courses": [
                    {
                        "id": course.id,
                        "title": course.title,
                        "description": course.description,
                        "date": course.date,
                        "class_date": class_date.isoformat(),
                        "price": course.price,
                    }
                    for course, class_date in zip(COURSES, calendar.class_dates)
                ],
                "bundle": offers.bundle_offer(),
                "reattunement": offers.reattunement_offer(),
                "calendar": {
                    "start": calendar.start.isoformat(),
                    "end": calendar.end.isoformat(),
                    "time_zone": calendar.time_zone,
                },
            },
            status=status.HTTP_200_OK,
        )


class CheckoutRouteView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(offers.checkout_route(timezone.now()), status=status.HTTP_200_OK)


class LandingOfferView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        return Response(offers.landing_offer(timezone.now()), status=status.HTTP_200_OK)


class ClassPageView(APIView):
    permission_classes = [AllowAny]

    def get(self, request, number: int):
        page = offers.class_page(timezone.now(), number)
        if page is None:
            raise Http404(f"Class {number} does not exist.")
        return Response(page, status=status.HTTP_200_OK)


class QuoteView(APIView):
    """Price a selection and list the payment plans the buyer can choose from."""

    permission_classes = [AllowAny]

    def post(self, request):
        serializer = SelectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        now = timezone.now()
        try:
            priced = offers.price_selection(data["courses"], data["include_reattunement"], now)
        except CheckoutError as e:
            return Response(e.to_dict(), status=e.status_code)

        today = rules.local_date(now, COURSE_CALENDAR)
        plans = offers.payment_options(priced, today)
        body = priced.as_dict()
        body["payment_options"] = [plan.as_dict() for plan in plans]
        return Response(body, status=status.HTTP_200_OK)


class ServerTimeView(APIView):
    permission_classes = [AllowAny]

    def get(self, request):
        now = timezone.now().astimezone(dt_timezone.utc)
        calendar = COURSE_CALENDAR
        local = rules.local_now(now, calendar)
        offset = local.utcoffset()
        offset_minutes = int(offset.total_seconds() // 60) if offset is not None else 0

        resp = Response(
            {
                "isoTime": now.isoformat(),
                "utcTime": now.strftime("%a, %d %b %Y %H:%M:%S GMT"),
                "localTime": local.isoformat(),
                "timestamp": int(now.timestamp() * 1000),
                "timezone": {
                    "name": calendar.time_zone,
                    "offsetMinutes": offset_minutes,
                    "offsetHours": offset_minutes / 60,
                },
                "dateStrings": {
                    "courseDateString": local.date().isoformat(),
                    "utcDateString": now.date().isoformat(),
                    "note": f"Comparisons use the {calendar.time_zone} calendar date",
                },
                "dateChecks": {
                    "isBeforeCourse": rules.is_before_course(now, calendar),
                    "isDuringCourse": rules.is_during_course(now, calendar),
                    "isAfterCourse": rules.is_after_course(now, calendar),
                    "currentClassIndex": rules.current_class_index(now, calendar),
                    "daysUntilStart": rules.days_until_start(now, calendar),
                },
            },
            status=status.HTTP_200_OK,
        )
        resp["Cache-Control"] = "no-store"
        return resp
