"""
URL configuration for the course checkout backend.

- /api/courses/     → catalog, calendar-driven offers and quotes
- /api/server-time/ → server clock and calendar checks
- /api/payments/    → Stripe checkout, hosted sessions and webhook
"""

from django.urls import include, path

from courses.views import ServerTimeView

urlpatterns = [
    path("api/courses/", include("courses.urls")),
    path("api/server-time/", ServerTimeView.as_view(), name="server-time"),
    path("api/payments/", include("core.stripe_integration.urls")),
]
