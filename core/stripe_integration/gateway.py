"""
Stripe Gateway
==============

Thin adapter around the official ``stripe`` SDK. Every Stripe call the
project makes goes through ``StripeGateway`` so that:

- the API key, API version and HTTP timeout are applied in one place;
- SDK exceptions are translated into the project's error taxonomy
  (``core.exceptions``) before they reach the orchestrator or a view;
- tests can replace the whole gateway with a mock.

Network retries inside the SDK are disabled. Whether a call may be
repeated is decided by the caller: customer lookups are idempotent and
retried once on timeout, charges are never retried.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import stripe
from django.conf import settings
from django.utils import timezone

from core.exceptions import (
    ConfigurationError,
    GatewayError,
    PaymentDeclinedError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

# retry policy lives in the orchestrator
stripe.max_network_retries = 0

_http_clients: Dict[float, Any] = {}


def _http_client(timeout: float):
    client = _http_clients.get(timeout)
    if client is None:
        client = stripe.RequestsClient(timeout=timeout)
        _http_clients[timeout] = client
    return client


def _email_key(email: str) -> str:
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()[:32]


def _translate(action: str, exc: stripe.StripeError) -> Exception:
    """Map a Stripe SDK exception to a project exception."""
    user_message = getattr(exc, "user_message", None) or str(exc)
    if isinstance(exc, stripe.CardError):
        return PaymentDeclinedError(
            user_message,
            details={"decline_code": getattr(exc, "code", None)},
        )
    if isinstance(exc, stripe.APIConnectionError):
        return GatewayError(
            f"Payment provider did not respond while trying to {action}.",
            retryable=True,
        )
    return GatewayError(
        f"Payment provider rejected the request to {action}.",
        details={"stripe_error": user_message},
    )


class StripeGateway:
    """
    Payment gateway backed by Stripe.

    Raises:
        ConfigurationError: if STRIPE_SECRET_KEY is not configured.
    """

    def __init__(self) -> None:
        secret_key = settings.STRIPE_SECRET_KEY
        if not secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set.")
        stripe.api_key = secret_key
        if settings.STRIPE_API_VERSION:
            stripe.api_version = settings.STRIPE_API_VERSION
        stripe.default_http_client = _http_client(settings.STRIPE_TIMEOUT_SECONDS)
        self.currency = settings.DEFAULT_CURRENCY

    # ---------- customers ----------

    def upsert_customer_by_email(
        self,
        email: str,
        *,
        name: str = "",
        phone: str = "",
        payment_method_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Return the Stripe customer for ``email``, creating it if needed.

        Creation carries an idempotency key derived from the email, so two
        concurrent checkouts for the same address resolve to one customer.
        If a payment method is given it is attached and made the default
        for invoices (needed for the installment subscription).
        """
        try:
            customer = self._find_customer(email)
            if customer is None:
                try:
                    customer = stripe.Customer.create(
                        email=email,
                        name=name or None,
                        phone=phone or None,
                        idempotency_key=f"customer-{_email_key(email)}",
                    )
                    logger.info("Created Stripe customer %s", customer["id"])
                except stripe.IdempotencyError:
                    # same key reused with different details: the customer exists now
                    customer = self._find_customer(email)
                    if customer is None:
                        raise
            elif name or phone:
                customer = stripe.Customer.modify(
                    customer["id"], name=name or None, phone=phone or None
                )

            if payment_method_id:
                self._attach_default_payment_method(customer["id"], payment_method_id)
            return customer
        except stripe.StripeError as e:
            raise _translate("look up the customer", e) from e

    def _find_customer(self, email: str) -> Optional[Dict[str, Any]]:
        result = stripe.Customer.list(email=email, limit=1)
        data = result["data"]
        return data[0] if data else None

    def _attach_default_payment_method(self, customer_id: str, payment_method_id: str) -> None:
        # Attach safely (idempotent)
        try:
            stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
        except stripe.InvalidRequestError as e:
            # if it's already attached to this customer, ignore
            if "already" not in str(e).lower():
                raise
        # default for invoices, so installments charge the same card
        stripe.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    def retrieve_customer(self, customer_id: str) -> Dict[str, Any]:
        try:
            return stripe.Customer.retrieve(customer_id)
        except stripe.StripeError as e:
            raise _translate("load the customer", e) from e

    # ---------- payment intents ----------

    def create_payment_intent(
        self,
        *,
        amount: int,
        metadata: Dict[str, str],
        customer_id: Optional[str] = None,
        payment_method_id: Optional[str] = None,
        confirm: bool = False,
        save_card: bool = False,
        description: str = "",
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create (and optionally confirm) a card PaymentIntent.

        ``save_card`` sets ``setup_future_usage=off_session`` so the card
        can be charged again by the installment subscription.
        """
        params: Dict[str, Any] = dict(
            amount=amount,
            currency=self.currency,
            payment_method_types=["card"],
            metadata=metadata,
        )
        if customer_id:
            params["customer"] = customer_id
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if confirm:
            params["confirm"] = True
        if save_card:
            params["setup_future_usage"] = "off_session"
        if description:
            params["description"] = description
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(**params)
        except stripe.StripeError as e:
            raise _translate("create the payment", e) from e
        logger.info(
            "PaymentIntent %s created (amount=%s, status=%s)",
            intent["id"],
            amount,
            intent["status"],
        )
        return intent

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            raise _translate("load the payment", e) from e

    def tag_payment_intent(self, payment_intent_id: str, metadata: Dict[str, str]) -> Dict[str, Any]:
        """Merge ``metadata`` into the PaymentIntent's metadata."""
        try:
            return stripe.PaymentIntent.modify(payment_intent_id, metadata=metadata)
        except stripe.StripeError as e:
            raise _translate("update the payment", e) from e

    # ---------- subscriptions ----------

    def find_installment_subscription(
        self, customer_id: str, payment_intent_id: str
    ) -> Optional[Dict[str, Any]]:
        """Subscription registered for the first charge ``payment_intent_id``, if any."""
        try:
            subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=100)
        except stripe.StripeError as e:
            raise _translate("list subscriptions", e) from e
        for subscription in subscriptions["data"]:
            if (subscription.get("metadata") or {}).get("original_payment_intent") == payment_intent_id:
                return subscription
        return None

    def _subscription_product(self) -> str:
        product_id = settings.STRIPE_SUBSCRIPTION_PRODUCT_ID
        if product_id:
            return product_id
        product = stripe.Product.create(
            name=f"Payment Plan - {timezone.now().isoformat()}",
            description="Installment payment plan",
        )
        logger.warning(
            "STRIPE_SUBSCRIPTION_PRODUCT_ID not set, created product %s", product["id"]
        )
        return product["id"]

    def create_installment_subscription(
        self,
        *,
        customer_id: str,
        payment_method_id: Optional[str],
        amount: int,
        anchor: datetime,
        cancel_at: datetime,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Monthly subscription charging ``amount`` from ``anchor`` until
        ``cancel_at``.

        Created with ``collection_method=send_invoice`` and no proration so
        nothing is collected before the anchor; switch it to automatic
        collection with ``enable_automatic_collection`` afterwards.
        """
        try:
            params: Dict[str, Any] = dict(
                customer=customer_id,
                items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product": self._subscription_product(),
                            "unit_amount": amount,
                            "recurring": {"interval": "month", "interval_count": 1},
                        }
                    }
                ],
                billing_cycle_anchor=int(anchor.timestamp()),
                cancel_at=int(cancel_at.timestamp()),
                proration_behavior="none",
                collection_method="send_invoice",
                days_until_due=30,
                metadata=metadata,
            )
            if payment_method_id:
                params["default_payment_method"] = payment_method_id
            if idempotency_key:
                params["idempotency_key"] = idempotency_key
            subscription = stripe.Subscription.create(**params)
        except stripe.StripeError as e:
            raise _translate("register the installment schedule", e) from e
        logger.info(
            "Subscription %s created for customer %s (anchor=%s, cancel_at=%s)",
            subscription["id"],
            customer_id,
            anchor.isoformat(),
            cancel_at.isoformat(),
        )
        return subscription

    def enable_automatic_collection(self, subscription_id: str) -> Dict[str, Any]:
        try:
            return stripe.Subscription.modify(
                subscription_id, collection_method="charge_automatically"
            )
        except stripe.StripeError as e:
            raise _translate("enable automatic collection", e) from e

    def count_paid_invoices(self, subscription_id: str) -> int:
        """Number of non-zero paid invoices of a subscription."""
        try:
            invoices = stripe.Invoice.list(subscription=subscription_id, status="paid", limit=100)
        except stripe.StripeError as e:
            raise _translate("list invoices", e) from e
        return sum(1 for invoice in invoices["data"] if invoice.get("amount_paid"))

    # ---------- hosted checkout ----------

    def create_checkout_session(
        self,
        items: List[Dict[str, Any]],
        *,
        customer_email: Optional[str],
        metadata: Dict[str, str],
    ) -> Dict[str, Any]:
        line_items = [
            {
                "price_data": {
                    "currency": self.currency,
                    "product_data": {"name": item["name"]},
                    "unit_amount": item["price"],
                },
                "quantity": 1,
            }
            for item in items
        ]
        params: Dict[str, Any] = dict(
            mode="payment",
            line_items=line_items,
            success_url=(
                f"{settings.FRONTEND_URL}/success?session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{settings.FRONTEND_URL}",
            custom_fields=[
                {
                    "key": "phone",
                    "label": {"type": "custom", "custom": "Phone Number"},
                    "type": "text",
                    "optional": False,
                },
                {
                    "key": "address",
                    "label": {"type": "custom", "custom": "Address"},
                    "type": "text",
                    "optional": False,
                },
            ],
            metadata=metadata,
        )
        if customer_email:
            params["customer_email"] = customer_email
        try:
            return stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise _translate("create the checkout session", e) from e

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        try:
            return stripe.checkout.Session.retrieve(
                session_id, expand=["line_items", "customer"]
            )
        except stripe.StripeError as e:
            raise _translate("load the checkout session", e) from e


def construct_webhook_event(payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and parse the event.

    Raises:
        WebhookSignatureError: signature missing, invalid, or payload not JSON.
        ConfigurationError: STRIPE_WEBHOOK_SECRET is not set.
    """
    if not signature:
        raise WebhookSignatureError("Missing Stripe-Signature header.")
    secret = settings.STRIPE_WEBHOOK_SECRET
    if not secret:
        raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not set.")
    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError("Webhook signature verification failed.") from e
    except ValueError as e:
        raise WebhookSignatureError("Webhook payload is not valid JSON.") from e
