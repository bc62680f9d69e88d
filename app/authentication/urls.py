"""
URL configuration for authentication app.

URL structure:
    /api/v1/auth/token/            - Obtain access/refresh pair (handle + password)
    /api/v1/auth/token/refresh/    - Refresh an access token
    /api/v1/auth/profile/          - Profile management (GET/PATCH)

Note:
    Registration and password flows live in the external auth layer; the
    messaging core only consumes verified identities.
"""

from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from authentication.views import ProfileView

app_name = "authentication"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token-obtain"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("profile/", ProfileView.as_view(), name="profile"),
]
