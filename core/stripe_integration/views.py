"""
Payment Views
=============

1. GetStripeConfigView          GET  /api/payments/stripe/config/
2. CheckoutView                 POST /api/payments/checkout/
3. PaymentIntentView            POST /api/payments/payment-intent/
4. SubscriptionView             POST /api/payments/subscription/
5. CheckoutSessionView          POST /api/payments/checkout-session/
6. CheckoutSessionDetailView    GET  /api/payments/checkout-session/<id>/
7. StripeWebhookView            POST /api/payments/webhook/

Amounts are never taken from the client: every view re-prices the
selection with ``courses.offers`` at request time. ``CheckoutError``
subclasses are answered with ``{"detail", "error_code"}`` and their HTTP
status.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

import json
import logging

from django.conf import settings
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import CheckoutError
from courses import calendar as rules
from courses import offers
from courses.catalog import COURSE_CALENDAR, REATTUNEMENT

from .checkout import CheckoutOrchestrator, CheckoutRequest, Contact
from .gateway import StripeGateway, construct_webhook_event
from .notifications import AutomationNotifier
from .serializers import (
    CheckoutSerializer,
    CheckoutSessionSerializer,
    PaymentIntentSerializer,
    ScheduleSerializer,
)
from .webhooks import handle_event

logger = logging.getLogger(__name__)


def _error_response(e: CheckoutError) -> Response:
    return Response(e.to_dict(), status=e.status_code)


def _checkout_request(data) -> CheckoutRequest:
    now = timezone.now()
    priced = offers.price_selection(data["courses"], data["include_reattunement"], now)
    plan = offers.plan_for_selection(
        priced, data["installments"], rules.local_date(now, COURSE_CALENDAR)
    )
    return CheckoutRequest(
        contact=Contact(email=data["email"], full_name=data["full_name"], phone=data["phone"]),
        selection=priced,
        plan=plan,
        payment_method_id=data["payment_method_id"] or None,
    )


def _orchestrator() -> CheckoutOrchestrator:
    return CheckoutOrchestrator(StripeGateway(), notifier=AutomationNotifier())


class GetStripeConfigView(APIView):
    """
    endpoint so the frontend can initialize Stripe.js
    """
    permission_classes = [AllowAny]

    def get(self, request):
        publishable_key = (
            settings.STRIPE_LIVE_PUBLISHABLE_KEY
            if settings.STRIPE_LIVE_MODE
            else settings.STRIPE_TEST_PUBLISHABLE_KEY
        )
        return Response({"publishableKey": publishable_key}, status=200)


class CheckoutView(APIView):
    """Charge the first installment and register the rest of the plan."""

    permission_classes = [AllowAny]

    def post(self, request):
        serializer = CheckoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            checkout = _checkout_request(serializer.validated_data)
            result = _orchestrator().run(checkout, confirm=True)
        except CheckoutError as e:
            logger.warning("Checkout rejected: %s (%s)", e.message, e.error_code)
            return _error_response(e)

        return Response(result.as_dict(), status=status.HTTP_200_OK)


class PaymentIntentView(APIView):
    """
    Create the first-installment PaymentIntent without confirming it.

    The front-end confirms it with Stripe.js (3-D Secure included) and then
    calls ``SubscriptionView`` to register the remaining installments.
    """

    permission_classes = [AllowAny]

    def post(self, request):
        serializer = PaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            checkout = _checkout_request(serializer.validated_data)
            result = _orchestrator().run(checkout, confirm=False)
        except CheckoutError as e:
            logger.warning("Payment intent rejected: %s (%s)", e.message, e.error_code)
            return _error_response(e)

        body = result.as_dict()
        body["clientSecret"] = result.client_secret
        return Response(body, status=status.HTTP_200_OK)


class SubscriptionView(APIView):
    permission_classes = [AllowAny]

    def post(self, request):
        serializer = ScheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            result = _orchestrator().register_schedule(serializer.validated_data["payment_intent_id"])
        except CheckoutError as e:
            return _error_response(e)
        return Response(result.as_dict(), status=status.HTTP_200_OK)


class CheckoutSessionView(APIView):
    """Stripe-hosted checkout for a single payment."""

    permission_classes = [AllowAny]

    def post(self, request):
        serializer = CheckoutSessionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            priced = offers.price_selection(data["courses"], data["include_reattunement"], timezone.now())
            manifest = priced.manifest()
            session = StripeGateway().create_checkout_session(
                manifest,
                customer_email=data["email"] or None,
                metadata={"items": json.dumps(manifest, separators=(",", ":"))},
            )
        except CheckoutError as e:
            return _error_response(e)

        return Response({"sessionId": session["id"], "url": session.get("url")}, status=status.HTTP_200_OK)


class CheckoutSessionDetailView(APIView):
    """Details of a completed hosted checkout, for the success page."""

    permission_classes = [AllowAny]

    def get(self, request, session_id: str):
        try:
            session = StripeGateway().retrieve_checkout_session(session_id)
        except CheckoutError as e:
            return _error_response(e)

        line_items = (session.get("line_items") or {}).get("data") or []
        items = [
            {"name": item.get("description"), "amount": item.get("amount_total")}
            for item in line_items
        ]
        details = session.get("customer_details") or {}
        has_reattunement = any(
            REATTUNEMENT.title in (item["name"] or "") for item in items
        )

        resp = Response(
            {
                "id": session["id"],
                "status": session.get("status"),
                "paymentStatus": session.get("payment_status"),
                "customerEmail": details.get("email") or session.get("customer_email"),
                "customerName": details.get("name"),
                "amountTotal": session.get("amount_total"),
                "currency": session.get("currency"),
                "items": items,
                "hasReattunement": has_reattunement,
                "thankYouUrl": settings.THANK_YOU_URL or None,
            },
            status=status.HTTP_200_OK,
        )
        resp["Cache-Control"] = "no-store"
        return resp


class StripeWebhookView(APIView):
    """
    Inbound Stripe events.

    The raw body is read before anything else so the signature is checked
    against the exact bytes Stripe signed.
    """

    permission_classes = [AllowAny]
    authentication_classes = []

    def post(self, request):
        payload = request.body
        signature = request.META.get("HTTP_STRIPE_SIGNATURE")
        logger.info(
            "Webhook received (signature=%s, bytes=%s)", "present" if signature else "missing", len(payload)
        )

        try:
            event = construct_webhook_event(payload, signature)
        except CheckoutError as e:
            logger.error("Webhook rejected: %s", e.message)
            return _error_response(e)

        try:
            outcome = handle_event(event, gateway=StripeGateway(), notifier=AutomationNotifier())
        except CheckoutError as e:
            logger.error("Webhook %s failed: %s", event.get("type"), e.message)
            return _error_response(e)
        except Exception as exc:
            logger.exception("Error handling event %s: %s", event.get("type"), exc)
            return Response({"detail": "Webhook handler failed."}, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response({"received": True, "outcome": outcome}, status=status.HTTP_200_OK)
