"""
Checkout Exceptions
===================

Exception hierarchy shared by the course and payment apps. Every class
carries the HTTP status the API layer answers with, so views can turn any
``CheckoutError`` into a response without knowing where it came from.

Taxonomy
--------
- ConfigurationError     → missing secret / webhook URL (500)
- InvalidSelectionError  → bad client input, empty or unknown items (400)
- WebhookSignatureError  → missing or invalid Stripe-Signature (400)
- PaymentDeclinedError   → card declined at charge creation (402)
- GatewayError           → Stripe unreachable or rejected the call (502)

Failures after the first charge was captured (subscription registration,
Make.com delivery) are not raised to the client; they are logged and
reported on the result instead.

Author: Beacons of Change Development Team
Version: 1.0.0
"""

from typing import Optional, Dict, Any


class CheckoutError(Exception):
    """
    Base exception class for all checkout related errors.

    Attributes:
        message (str): Human-readable error message
        status_code (int): HTTP status code the API responds with
        error_code (Optional[str]): Machine-readable error identifier
        details (Dict[str, Any]): Additional error details
    """

    status_code: int = 500
    default_error_code: str = "checkout_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to the JSON body returned by the API.

        Returns:
            Dictionary representation of the exception
        """
        data: Dict[str, Any] = {"detail": self.message, "error_code": self.error_code}
        if self.details:
            data["details"] = self.details
        return data


class ConfigurationError(CheckoutError):
    """A required setting (Stripe key, webhook secret, Make.com URL) is missing."""

    status_code = 500
    default_error_code = "configuration_error"


class InvalidSelectionError(CheckoutError):
    """The requested items or installment plan cannot be sold."""

    status_code = 400
    default_error_code = "invalid_selection"


class WebhookSignatureError(CheckoutError):
    """Inbound webhook is unsigned or the signature does not verify."""

    status_code = 400
    default_error_code = "invalid_signature"


class PaymentDeclinedError(CheckoutError):
    """The card was declined while creating the first charge."""

    status_code = 402
    default_error_code = "payment_declined"


class GatewayError(CheckoutError):
    """
    Stripe could not complete a call.

    Attributes:
        retryable (bool): True for network errors/timeouts, where repeating
            an idempotent call is safe.
    """

    status_code = 502
    default_error_code = "gateway_error"

    def __init__(self, message: str, retryable: bool = False, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retryable = retryable
