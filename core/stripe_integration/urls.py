from django.urls import path
from .views import (
    CheckoutSessionDetailView,
    CheckoutSessionView,
    CheckoutView,
    GetStripeConfigView,
    PaymentIntentView,
    StripeWebhookView,
    SubscriptionView,
)

app_name = "stripe_integration"

urlpatterns = [
    path("stripe/config/", GetStripeConfigView.as_view(), name="stripe-config"),
    path("checkout/", CheckoutView.as_view(), name="checkout"),
    path("payment-intent/", PaymentIntentView.as_view(), name="payment-intent"),
    path("subscription/", SubscriptionView.as_view(), name="subscription"),
    path("checkout-session/", CheckoutSessionView.as_view(), name="checkout-session"),
    path("checkout-session/<str:session_id>/", CheckoutSessionDetailView.as_view(), name="checkout-session-detail"),
    path("webhook/", StripeWebhookView.as_view(), name="webhook"),
]
