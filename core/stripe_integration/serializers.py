from rest_framework import serializers

from courses.payment_plans import MAX_INSTALLMENTS
from courses.serializers import SelectionSerializer


class ContactSerializer(serializers.Serializer):
    email = serializers.EmailField()
    full_name = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    phone = serializers.CharField(max_length=40, required=False, allow_blank=True, default="")


class CheckoutSerializer(SelectionSerializer, ContactSerializer):
    """Selection, contact details, chosen plan and the Stripe.js payment method."""

    installments = serializers.IntegerField(min_value=1, max_value=MAX_INSTALLMENTS, default=1)
    payment_method_id = serializers.CharField(max_length=255)


class PaymentIntentSerializer(CheckoutSerializer):
    payment_method_id = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class ScheduleSerializer(serializers.Serializer):
    payment_intent_id = serializers.CharField(max_length=255)


class CheckoutSessionSerializer(SelectionSerializer):
    email = serializers.EmailField(required=False, allow_blank=True, default="")
