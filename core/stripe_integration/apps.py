"""
Stripe Integration AppConfig
============================

Registers `core.stripe_integration` with Django. The app has no models
and no signal receivers: Stripe events arrive through `StripeWebhookView`
and are dispatched by `webhooks.handle_event`.

Author: Beacons of Change Development Team
Date: 2025-03-04
"""

from django.apps import AppConfig


class StripeIntegrationConfig(AppConfig):
    """
    App configuration for the `core.stripe_integration` package.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "core.stripe_integration"
    verbose_name = "Stripe Integration"
