"""
Checkout Orchestrator
=====================

Sequences the Stripe calls of one checkout attempt:

1. resolve the payer by email (idempotent, retried once on timeout)
2. create the first-installment charge, carrying the full plan in metadata
3. for split plans, register a monthly subscription for the remaining
   installments, anchored one month after the first charge
4. report the outcome

State machine
-------------
    initiated → payer_resolved → first_charge_captured
        → schedule_registered | schedule_failed → complete

- A failure before the first charge is captured aborts the attempt
  (state ``failed``) and the error is raised to the caller.
- Once money is captured the attempt always completes. A failed schedule
  is recorded as ``schedule_failed``, logged for manual follow-up and
  reported to Make.com; the charge is never rolled back.
- ``action_required`` pauses the attempt when the card needs customer
  authentication. The client confirms the PaymentIntent and calls
  ``register_schedule`` to continue from ``first_charge_captured``.
  Repeating that call returns the subscription already registered for
  the PaymentIntent.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timezone as dt_timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from django.utils import timezone

from core.exceptions import (
    CheckoutError,
    GatewayError,
    InvalidSelectionError,
    PaymentDeclinedError,
)
from courses import calendar as rules
from courses.catalog import COURSE_CALENDAR
from courses.offers import PricedSelection
from courses.payment_plans import PaymentPlan, add_months

from .notifications import AutomationNotifier, build_payload, customer_block, parse_json_metadata

logger = logging.getLogger(__name__)


class CheckoutState(str, Enum):
    INITIATED = "initiated"
    PAYER_RESOLVED = "payer_resolved"
    ACTION_REQUIRED = "action_required"
    FIRST_CHARGE_CAPTURED = "first_charge_captured"
    SCHEDULE_REGISTERED = "schedule_registered"
    SCHEDULE_FAILED = "schedule_failed"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class Contact:
    email: str
    full_name: str = ""
    phone: str = ""

    def as_dict(self) -> Dict[str, str]:
        return {"fullName": self.full_name, "email": self.email, "phone": self.phone}


@dataclass
class CheckoutRequest:
    contact: Contact
    selection: PricedSelection
    plan: PaymentPlan
    payment_method_id: Optional[str] = None
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class CheckoutResult:
    """Outcome of a checkout attempt and the states it went through."""

    attempt_id: str
    plan: Optional[PaymentPlan] = None
    state: CheckoutState = CheckoutState.INITIATED
    history: List[CheckoutState] = field(default_factory=lambda: [CheckoutState.INITIATED])
    success: bool = False
    warning: Optional[str] = None
    customer_id: Optional[str] = None
    payment_intent_id: Optional[str] = None
    client_secret: Optional[str] = None
    subscription_id: Optional[str] = None
    next_payment_date: Optional[str] = None

    def advance(self, state: CheckoutState) -> None:
        if state in self.history:
            raise RuntimeError(f"Checkout {self.attempt_id} re-entered state {state.value}.")
        self.state = state
        self.history.append(state)

    @property
    def schedule_failed(self) -> bool:
        return CheckoutState.SCHEDULE_FAILED in self.history

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "state": self.state.value,
            "states": [s.value for s in self.history],
            "warning": self.warning,
            "schedule_failed": self.schedule_failed,
            "attempt_id": self.attempt_id,
            "payment_intent_id": self.payment_intent_id,
            "client_secret": self.client_secret,
            "subscription_id": self.subscription_id,
            "next_payment_date": self.next_payment_date,
            "plan": self.plan.as_dict() if self.plan else None,
        }


def plan_metadata(request: CheckoutRequest) -> Dict[str, str]:
    """Metadata describing the whole plan, attached to the first charge."""
    plan = request.plan
    return {
        "type": plan.payment_type,
        "payment_number": "1",
        "total_payments": str(plan.count),
        "total_amount": str(plan.total),
        "installment_amount": str(plan.recurring_amount),
        "remaining_payments": str(plan.remaining_count),
        "items": json.dumps(request.selection.manifest(), separators=(",", ":")),
        "contact_info": json.dumps(request.contact.as_dict(), separators=(",", ":")),
        "checkout_attempt": request.attempt_id,
    }


class CheckoutOrchestrator:
    """
    Runs checkout attempts against a payment gateway.

    Args:
        gateway: object with the ``StripeGateway`` interface
        notifier: Make.com notifier used to report schedule failures
        clock: returns the current aware datetime (defaults to django.utils.timezone.now)
    """

    PAYER_ATTEMPTS = 2
    SCHEDULE_KEY = "installment_subscription"

    def __init__(
        self,
        gateway,
        notifier: Optional[AutomationNotifier] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

    def _now(self) -> datetime:
        return self.clock() if self.clock is not None else timezone.now()

    # ---------- entry points ----------

    def run(self, request: CheckoutRequest, confirm: bool = True) -> CheckoutResult:
        """
        Execute a checkout attempt.

        With ``confirm=False`` the first charge is only created; the
        result is ``action_required`` and carries the client secret for
        Stripe.js to confirm.

        Raises:
            GatewayError: payer could not be resolved or charge failed.
            PaymentDeclinedError: the card was declined.
            InvalidSelectionError: a confirmed checkout without a card.
        """
        result = CheckoutResult(attempt_id=request.attempt_id, plan=request.plan)
        logger.info(
            "Checkout %s started: %s cents in %s installment(s)",
            request.attempt_id,
            request.plan.total,
            request.plan.count,
        )
        if confirm and not request.payment_method_id:
            result.advance(CheckoutState.FAILED)
            raise InvalidSelectionError("A payment method is required to complete checkout.")

        try:
            customer = self._resolve_payer(request)
        except CheckoutError:
            result.advance(CheckoutState.FAILED)
            logger.error("Checkout %s aborted: payer could not be resolved", request.attempt_id)
            raise
        result.customer_id = customer["id"]
        result.advance(CheckoutState.PAYER_RESOLVED)

        try:
            intent = self.gateway.create_payment_intent(
                amount=request.plan.first_amount,
                metadata=plan_metadata(request),
                customer_id=customer["id"],
                payment_method_id=request.payment_method_id,
                confirm=confirm,
                save_card=request.plan.is_split,
                description=", ".join(item.name for item in request.selection.items),
                idempotency_key=f"first-charge-{request.attempt_id}",
            )
        except CheckoutError:
            # never retried: a timeout here may still have charged the card
            result.advance(CheckoutState.FAILED)
            logger.error("Checkout %s aborted: first charge failed", request.attempt_id)
            raise
        result.payment_intent_id = intent["id"]

        status = intent["status"]
        awaiting_client = not confirm and status in ("requires_confirmation", "requires_payment_method")
        if status == "requires_action" or awaiting_client:
            result.client_secret = intent["client_secret"]
            result.advance(CheckoutState.ACTION_REQUIRED)
            logger.info("Checkout %s waiting for client confirmation (%s)", request.attempt_id, status)
            return result
        if status != "succeeded":
            result.advance(CheckoutState.FAILED)
            raise PaymentDeclinedError(
                "Your payment could not be completed. Please try another card.",
                details={"status": status},
            )

        result.advance(CheckoutState.FIRST_CHARGE_CAPTURED)
        self._finish(
            result,
            customer_id=customer["id"],
            payment_method_id=request.payment_method_id,
            metadata=plan_metadata(request),
            contact=request.contact.as_dict(),
            charged_at=self._charged_at(intent),
        )
        return result

    def register_schedule(self, payment_intent_id: str) -> CheckoutResult:
        """
        Continue an attempt after the client confirmed the first charge.

        Safe to call again for the same PaymentIntent: a schedule that is
        already registered (tagged on the intent, or found among the
        customer's subscriptions) is returned instead of a new one.

        Raises:
            InvalidSelectionError: the PaymentIntent has not succeeded or
                is not a first installment created by this checkout.
            GatewayError: existing subscriptions could not be listed.
        """
        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        metadata = dict(intent.get("metadata") or {})
        if metadata.get("payment_number") != "1" or "total_payments" not in metadata:
            raise InvalidSelectionError("This payment was not created by the course checkout.")
        if intent["status"] != "succeeded":
            raise InvalidSelectionError(
                "The first payment has not been completed yet.",
                error_code="payment_incomplete",
                details={"status": intent["status"]},
            )

        existing = metadata.get(self.SCHEDULE_KEY)
        if not existing and int(metadata["total_payments"]) > 1 and intent.get("customer"):
            subscription = self.gateway.find_installment_subscription(intent["customer"], intent["id"])
            existing = subscription["id"] if subscription else None

        result = CheckoutResult(attempt_id=metadata.get("checkout_attempt") or payment_intent_id)
        result.payment_intent_id = intent["id"]
        result.customer_id = intent.get("customer")
        result.advance(CheckoutState.PAYER_RESOLVED)
        result.advance(CheckoutState.FIRST_CHARGE_CAPTURED)
        self._finish(
            result,
            customer_id=intent.get("customer"),
            payment_method_id=intent.get("payment_method"),
            metadata=metadata,
            contact=parse_json_metadata(metadata.get("contact_info"), {}),
            charged_at=self._charged_at(intent),
            existing_subscription_id=existing,
        )
        return result

    # ---------- steps ----------

    def _charged_at(self, intent: Dict[str, Any]) -> datetime:
        created = intent.get("created")
        if created:
            return datetime.fromtimestamp(int(created), tz=dt_timezone.utc)
        return self._now()

    @staticmethod
    def schedule_dates(charged_at: datetime, remaining: int) -> Tuple[datetime, datetime]:
        """
        Billing anchor and cancellation instant of the installment subscription.

        Stripe keeps billing on the day of the anchor, so a month-end first
        charge (Jan 31) is followed by charges on the clamped day (Feb 28,
        Mar 28, ...). The cancellation is counted from the anchor on the
        same day so exactly ``remaining`` invoices are produced.
        """
        local = rules.local_now(charged_at, COURSE_CALENDAR)
        at_time: time = local.timetz()
        anchor_date = add_months(local.date(), 1)
        anchor = datetime.combine(anchor_date, at_time)
        cancel_at = datetime.combine(add_months(anchor_date, remaining), at_time)
        return anchor, cancel_at

    def _resolve_payer(self, request: CheckoutRequest) -> Dict[str, Any]:
        attempt = 1
        while True:
            try:
                return self.gateway.upsert_customer_by_email(
                    request.contact.email,
                    name=request.contact.full_name,
                    phone=request.contact.phone,
                    payment_method_id=request.payment_method_id,
                )
            except GatewayError as e:
                if not e.retryable or attempt >= self.PAYER_ATTEMPTS:
                    raise
                logger.warning(
                    "Checkout %s: customer lookup timed out, retrying once", request.attempt_id
                )
                attempt += 1

    def _finish(
        self,
        result: CheckoutResult,
        *,
        customer_id: Optional[str],
        payment_method_id: Optional[str],
        metadata: Dict[str, str],
        contact: Dict[str, Any],
        charged_at: datetime,
        existing_subscription_id: Optional[str] = None,
    ) -> None:
        total_payments = int(metadata.get("total_payments", "1"))
        remaining = total_payments - 1
        if remaining > 0:
            self._register_schedule(
                result,
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                amount=int(metadata["installment_amount"]),
                remaining=remaining,
                metadata=metadata,
                contact=contact,
                charged_at=charged_at,
                existing_subscription_id=existing_subscription_id,
            )
        result.success = True
        result.advance(CheckoutState.COMPLETE)
        logger.info(
            "Checkout %s complete (payment=%s, subscription=%s, warning=%s)",
            result.attempt_id,
            result.payment_intent_id,
            result.subscription_id,
            bool(result.warning),
        )

    def _register_schedule(
        self,
        result: CheckoutResult,
        *,
        customer_id: Optional[str],
        payment_method_id: Optional[str],
        amount: int,
        remaining: int,
        metadata: Dict[str, str],
        contact: Dict[str, Any],
        charged_at: datetime,
        existing_subscription_id: Optional[str] = None,
    ) -> None:
        anchor, cancel_at = self.schedule_dates(charged_at, remaining)

        if existing_subscription_id:
            logger.info(
                "Payment %s already has installment subscription %s",
                result.payment_intent_id,
                existing_subscription_id,
            )
            result.subscription_id = existing_subscription_id
            result.next_payment_date = anchor.date().isoformat()
            result.advance(CheckoutState.SCHEDULE_REGISTERED)
            return

        sub_metadata = {
            "original_payment_intent": result.payment_intent_id or "",
            "items": metadata.get("items", "[]"),
            "total_payments": metadata.get("total_payments", ""),
            "total_amount": metadata.get("total_amount", ""),
            "payment_number": "2",
        }

        try:
            if not customer_id:
                raise GatewayError("Payment has no customer to bill installments to.")
            subscription = self.gateway.create_installment_subscription(
                customer_id=customer_id,
                payment_method_id=payment_method_id,
                amount=amount,
                anchor=anchor,
                cancel_at=cancel_at,
                metadata=sub_metadata,
                idempotency_key=f"installments-{result.payment_intent_id}",
            )
            result.subscription_id = subscription["id"]
            self.gateway.enable_automatic_collection(subscription["id"])
        except Exception as e:
            logger.exception(
                "Payment %s captured but installment schedule failed (subscription=%s); "
                "manual follow-up required: %s",
                result.payment_intent_id,
                result.subscription_id,
                e,
            )
            result.warning = (
                "Your first payment was successful. We could not set up the remaining "
                "installments automatically; our team will contact you."
            )
            result.advance(CheckoutState.SCHEDULE_FAILED)
            self._report_schedule_failure(result, amount, remaining, metadata, contact, e)
            return

        try:
            self.gateway.tag_payment_intent(
                result.payment_intent_id, {self.SCHEDULE_KEY: result.subscription_id}
            )
        except CheckoutError as e:
            # the subscription is still found through its original_payment_intent
            logger.warning(
                "Could not tag payment %s with subscription %s: %s",
                result.payment_intent_id,
                result.subscription_id,
                e.message,
            )

        result.next_payment_date = anchor.date().isoformat()
        result.advance(CheckoutState.SCHEDULE_REGISTERED)

    def _report_schedule_failure(
        self,
        result: CheckoutResult,
        amount: int,
        remaining: int,
        metadata: Dict[str, str],
        contact: Dict[str, Any],
        error: Exception,
    ) -> None:
        if self.notifier is None:
            return
        payload = build_payload(
            "subscription.failed",
            customer=customer_block(contact.get("fullName"), contact.get("email"), contact.get("phone")),
            payment={
                "id": result.payment_intent_id,
                "amount": amount,
                "status": "schedule_failed",
                "paymentType": metadata.get("type"),
                "remainingPayments": remaining,
                "totalPayments": metadata.get("total_payments"),
                "totalAmount": metadata.get("total_amount"),
                "error": str(error),
            },
            items=parse_json_metadata(metadata.get("items"), []),
        )
        try:
            self.notifier.send(payload)
        except CheckoutError as e:
            logger.error("Could not report schedule failure for %s: %s", result.payment_intent_id, e)
