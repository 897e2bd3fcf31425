from rest_framework import serializers


class SelectionSerializer(serializers.Serializer):
    """Course ids (or ``bundle``) plus the Re-Attunement flag."""

    courses = serializers.ListField(
        child=serializers.CharField(max_length=50), required=False, default=list
    )
    include_reattunement = serializers.BooleanField(required=False, default=False)
