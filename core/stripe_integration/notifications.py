"""
Make.com Automation Webhook
===========================

Forwards purchase events to the Make.com scenario that handles welcome
emails, CRM entries and Re-Attunement scheduling.

Delivery is fire-and-forget: one POST per event, no retries. A failed or
slow delivery is logged and never changes the checkout outcome. A missing
``MAKE_WEBHOOK_URL`` is a configuration error and is raised to the caller.

Payload
-------
{
    "event": "payment.succeeded",
    "timestamp": "2025-03-04T15:00:00+00:00",
    "customer": {"fullName", "firstName", "lastName", "email", "phone"},
    "payment": {"id", "amount", "currency", "status", "paymentType",
                "paymentNumber", "totalPayments", "totalAmount"},
    "items": [{"name": "...", "price": 39500}]
}

Amounts stay in cents.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests
from django.conf import settings
from django.utils import timezone

from core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def split_name(full_name: Optional[str]) -> Tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def customer_block(full_name: Optional[str], email: Optional[str], phone: Optional[str]) -> Dict[str, Any]:
    first_name, last_name = split_name(full_name)
    return {
        "fullName": full_name or "",
        "firstName": first_name,
        "lastName": last_name,
        "email": email or "",
        "phone": phone or "",
    }


def parse_json_metadata(value: Optional[str], default: Any) -> Any:
    """Decode a JSON string stored in Stripe metadata; malformed values yield ``default``."""
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring malformed JSON metadata: %.80s", value)
        return default


def build_payload(
    event: str,
    *,
    customer: Dict[str, Any],
    payment: Dict[str, Any],
    items: List[Dict[str, Any]],
) -> Dict[str, Any]:
    return {
        "event": event,
        "timestamp": timezone.now().isoformat(),
        "customer": customer,
        "payment": payment,
        "items": items,
    }


def _redact(url: str) -> str:
    head, _, _ = url.rstrip("/").rpartition("/")
    return f"{head}/***" if head else "***"


class AutomationNotifier:
    """POSTs event payloads to the Make.com webhook."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = url if url is not None else settings.MAKE_WEBHOOK_URL
        self.timeout = timeout if timeout is not None else settings.MAKE_WEBHOOK_TIMEOUT_SECONDS

    def send(self, payload: Dict[str, Any]) -> bool:
        """
        Deliver one event.

        Returns:
            True if Make.com accepted the payload, False otherwise.

        Raises:
            ConfigurationError: if MAKE_WEBHOOK_URL is not set.
        """
        if not self.url:
            raise ConfigurationError("MAKE_WEBHOOK_URL is not set.")

        logger.info("Sending %s to Make.com webhook %s", payload.get("event"), _redact(self.url))
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error("Make.com webhook delivery failed: %s", str(e))
            return False

        if not response.ok:
            logger.error(
                "Make.com webhook answered %s: %.200s", response.status_code, response.text
            )
            return False

        logger.info("Successfully sent %s to Make.com", payload.get("event"))
        return True
