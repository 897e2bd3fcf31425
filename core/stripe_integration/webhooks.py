"""
Stripe Webhook Handlers
=======================

Processes Stripe events that ``StripeWebhookView`` has already verified
(signature checked by ``construct_webhook_event``) and forwards purchase
events to Make.com.

Handled event types:
- `payment_intent.succeeded`      → notify `payment.succeeded` (first or only installment)
- `payment_intent.payment_failed` → log failure details
- `invoice.payment_succeeded`     → notify `payment.succeeded` for installments 2..n
- `checkout.session.completed`    → notify `checkout.completed` (hosted checkout)
- `customer.created` / `customer.updated` → log only

Intents created by a subscription invoice carry an ``invoice`` id; those
are left to the invoice handler so an installment is reported once.

Safety:
- Unknown event types are acknowledged and logged.
- A Make.com delivery failure is logged and the event is still acknowledged.
- A missing MAKE_WEBHOOK_URL raises ``ConfigurationError`` so Stripe sees
  a 500 and retries once the setting is fixed.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict

from core.exceptions import GatewayError

from .notifications import (
    AutomationNotifier,
    build_payload,
    customer_block,
    parse_json_metadata,
)

logger = logging.getLogger(__name__)


# ---------- helpers ----------


def _extract_data_object(event: Dict[str, Any]) -> Dict[str, Any]:
    """Return the event's ``data.object`` payload (or ``{}`` if absent)."""
    data = event.get("data") or {}
    obj = data.get("object")
    return obj if obj is not None else {}


def _resolve_customer(gateway, customer_id: str | None, metadata: Dict[str, Any]) -> Dict[str, Any]:
    """
    Customer identity for the Make.com payload.

    The Stripe customer record is preferred; if it cannot be loaded or was
    deleted, the ``contact_info`` JSON written at checkout is used.
    """
    if customer_id:
        try:
            customer = gateway.retrieve_customer(customer_id)
        except GatewayError as e:
            logger.error("Could not load customer %s: %s", customer_id, e)
        else:
            if not customer.get("deleted"):
                return customer_block(customer.get("name"), customer.get("email"), customer.get("phone"))

    contact = parse_json_metadata(metadata.get("contact_info"), {})
    logger.info("Using customer info from metadata")
    return customer_block(contact.get("fullName"), contact.get("email"), contact.get("phone"))


# ---------- concrete handlers ----------


def _handle_payment_intent_succeeded(intent: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    pi_id = intent.get("id")
    if intent.get("invoice"):
        logger.info("payment_intent.succeeded pi=%s belongs to an invoice, skipping", pi_id)
        return "skipped"

    metadata = intent.get("metadata") or {}
    logger.info("payment_intent.succeeded pi=%s amount=%s", pi_id, intent.get("amount"))

    payload = build_payload(
        "payment.succeeded",
        customer=_resolve_customer(gateway, intent.get("customer"), metadata),
        payment={
            "id": pi_id,
            "amount": intent.get("amount"),
            "currency": intent.get("currency"),
            "status": "succeeded",
            "paymentType": metadata.get("type"),
            "paymentNumber": metadata.get("payment_number"),
            "totalPayments": metadata.get("total_payments"),
            "totalAmount": metadata.get("total_amount"),
        },
        items=parse_json_metadata(metadata.get("items"), []),
    )
    notifier.send(payload)
    return "notified"


def _handle_payment_intent_failed(intent: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    metadata = intent.get("metadata") or {}
    error = intent.get("last_payment_error") or {}
    logger.warning(
        "payment_intent.payment_failed pi=%s amount=%s %s customer=%s error=%s",
        intent.get("id"),
        intent.get("amount"),
        intent.get("currency"),
        parse_json_metadata(metadata.get("contact_info"), {}).get("email"),
        error.get("message"),
    )
    return "logged"


def _handle_invoice_payment_succeeded(invoice: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    """
    Installments 2..n of a split plan.

    The plan description lives in the subscription metadata; the payment
    number is derived from the paid invoices so far (the first installment
    was a plain PaymentIntent).
    """
    amount_paid = invoice.get("amount_paid") or 0
    subscription_id = invoice.get("subscription")
    if not amount_paid or not subscription_id:
        logger.info("invoice.payment_succeeded %s has nothing to report", invoice.get("id"))
        return "skipped"

    metadata = (invoice.get("subscription_details") or {}).get("metadata") or invoice.get("metadata") or {}
    paid_installments = gateway.count_paid_invoices(subscription_id)
    logger.info(
        "invoice.payment_succeeded sub=%s amount=%s paid_invoices=%s",
        subscription_id,
        amount_paid,
        paid_installments,
    )

    payload = build_payload(
        "payment.succeeded",
        customer=_resolve_customer(gateway, invoice.get("customer"), metadata),
        payment={
            "id": invoice.get("payment_intent") or invoice.get("id"),
            "amount": amount_paid,
            "currency": invoice.get("currency"),
            "status": "succeeded",
            "paymentType": "split_payment",
            "paymentNumber": str(paid_installments + 1),
            "totalPayments": metadata.get("total_payments"),
            "totalAmount": metadata.get("total_amount"),
        },
        items=parse_json_metadata(metadata.get("items"), []),
    )
    notifier.send(payload)
    return "notified"


def _handle_checkout_session_completed(session: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    metadata = session.get("metadata") or {}
    details = session.get("customer_details") or {}
    logger.info(
        "checkout.session.completed session=%s status=%s",
        session.get("id"),
        session.get("payment_status"),
    )

    payload = build_payload(
        "checkout.completed",
        customer=customer_block(details.get("name"), details.get("email"), details.get("phone")),
        payment={
            "id": session.get("payment_intent") or session.get("id"),
            "amount": session.get("amount_total"),
            "currency": session.get("currency"),
            "status": session.get("payment_status"),
            "paymentType": "full_payment",
            "paymentNumber": "1",
            "totalPayments": "1",
            "totalAmount": str(session.get("amount_total")),
        },
        items=parse_json_metadata(metadata.get("items"), []),
    )
    notifier.send(payload)
    return "notified"


def _handle_customer_event(customer: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    logger.info("Customer %s: email=%s name=%s", customer.get("id"), customer.get("email"), customer.get("name"))
    return "logged"


HANDLERS: Dict[str, Callable[[Dict[str, Any], Any, AutomationNotifier], str]] = {
    "payment_intent.succeeded": _handle_payment_intent_succeeded,
    "payment_intent.payment_failed": _handle_payment_intent_failed,
    "invoice.payment_succeeded": _handle_invoice_payment_succeeded,
    "checkout.session.completed": _handle_checkout_session_completed,
    "customer.created": _handle_customer_event,
    "customer.updated": _handle_customer_event,
}


# ---------- entrypoint ----------


def handle_event(event: Dict[str, Any], gateway, notifier: AutomationNotifier) -> str:
    """
    Dispatch a verified Stripe event to its handler.

    Returns:
        Short outcome label ("notified", "logged", "skipped", "ignored").

    Raises:
        ConfigurationError: a notifying handler ran without MAKE_WEBHOOK_URL.
    """
    event_type = event.get("type")
    logger.info(
        "[webhook] %s (event_id=%s, livemode=%s)",
        event_type,
        event.get("id"),
        event.get("livemode"),
    )

    handler = HANDLERS.get(event_type)
    if handler is None:
        # Not an error: we simply don't need to act on every event type.
        logger.info("Unhandled event type: %s", event_type)
        return "ignored"
    return handler(_extract_data_object(event), gateway, notifier)
