"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (public card embedded in messages, conversations, search)
- Profile (the caller's own account, read and update)

Related files:
    - models.py: User model
    - views.py: ProfileView
    - chat/serializers.py: Embeds UserSerializer for senders and peers

Security:
    - Password and credential fields are never serialized
    - handle is read-only everywhere (immutable after creation)
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Public user card.

    Used for message senders, conversation peers and user search results.
    """

    class Meta:
        model = User
        fields = [
            "id",
            "handle",
            "display_name",
            "profile_picture",
            "is_online",
            "last_active",
        ]
        read_only_fields = fields


class ProfileSerializer(serializers.ModelSerializer):
    """Full profile of the authenticated user."""

    class Meta:
        model = User
        fields = [
            "id",
            "handle",
            "display_name",
            "email",
            "bio",
            "profile_picture",
            "public_key",
            "is_online",
            "last_active",
            "date_joined",
        ]
        read_only_fields = fields


class ProfileUpdateSerializer(serializers.Serializer):
    """
    Writable profile fields.

    The handle is deliberately absent: it cannot change after creation.
    """

    display_name = serializers.CharField(max_length=100, required=False, allow_blank=True)
    bio = serializers.CharField(max_length=500, required=False, allow_blank=True)
    profile_picture = serializers.URLField(max_length=500, required=False, allow_blank=True)
    public_key = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        """Reject attempts to smuggle a handle change through the payload."""
        if "handle" in self.initial_data:
            raise serializers.ValidationError(
                {"handle": ["Handle cannot be changed after creation."]}
            )
        return attrs
