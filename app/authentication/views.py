"""
Views for authentication app.

This module contains the profile endpoint for the authenticated user.
Token issuance is provided by djangorestframework-simplejwt and wired in
authentication/urls.py.

Related files:
    - serializers.py: Profile serializers
    - chat/services.py: UserDirectoryService (profile reads and updates)
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import ProfileSerializer, ProfileUpdateSerializer
from chat.services import UserDirectoryService


class ProfileView(APIView):
    """
    API view for the current user's profile.

    GET: Retrieve current user's profile
    PATCH: Update display name, bio, picture or public key

    URL: /api/v1/auth/profile/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get current user's profile",
        tags=["Auth - Profile"],
        responses={200: ProfileSerializer},
    )
    def get(self, request):
        """Retrieve the current user's profile."""
        user = UserDirectoryService.get_profile(request.user.id)
        return Response(ProfileSerializer(user).data)

    @extend_schema(
        summary="Partially update profile",
        tags=["Auth - Profile"],
        request=ProfileUpdateSerializer,
        responses={200: ProfileSerializer},
    )
    def patch(self, request):
        """
        Partially update the current user's profile.

        Request body:
            Any subset of display_name, bio, profile_picture, public_key.
        """
        serializer = ProfileUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = UserDirectoryService.update_profile(
            request.user, **serializer.validated_data
        )
        return Response(ProfileSerializer(user).data)
