from django.urls import path
from .views import (
    CourseCatalogView,
    CheckoutRouteView,
    LandingOfferView,
    ClassPageView,
    QuoteView,
)

app_name = "courses"

urlpatterns = [
    path("", CourseCatalogView.as_view(), name="course-catalog"),
    path("checkout/", CheckoutRouteView.as_view(), name="checkout-route"),
    path("offer/", LandingOfferView.as_view(), name="landing-offer"),
    path("classes/<int:number>/", ClassPageView.as_view(), name="class-page"),
    path("quote/", QuoteView.as_view(), name="quote"),
]
