"""
Serializers for authentication models.

Related files:
    - models.py: User model
    - views.py: Views that use these serializers
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for User model (read operations).

    Used for /api/v1/auth/me/ and nested in chat room participants.
    """

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "display_name",
            "is_online",
            "date_joined",
        ]
        read_only_fields = fields


class ParticipantUserSerializer(serializers.ModelSerializer):
    """
    Minimal user shape embedded in chat payloads.

    Email is left out: other participants only need the id and the name.
    """

    class Meta:
        model = User
        fields = ["id", "display_name", "is_online"]
        read_only_fields = fields
