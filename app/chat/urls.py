"""
URL configuration for chat API.

URL Structure:
    Conversations:
        /conversations/                          GET, POST
        /conversations/{id}/                     GET
        /conversations/{id}/participants/        POST

    Messages:
        /conversations/{id}/messages/            GET, POST
        /messages/{id}/read/                     POST
        /messages/{id}/statuses/                 GET

    Users:
        /users/search/                           GET
        /presence/{user_id}/                     GET

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import (
    ConversationViewSet,
    MessageReadView,
    MessageStatusListView,
    MessageViewSet,
    UserPresenceView,
    UserSearchView,
)

# Main router for conversations
router = DefaultRouter()
router.register(r"conversations", ConversationViewSet, basename="conversation")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    # Nested routes for messages
    path(
        "conversations/<int:conversation_pk>/messages/",
        MessageViewSet.as_view({"get": "list", "post": "create"}),
        name="conversation-message-list",
    ),
    path("messages/<int:message_id>/read/", MessageReadView.as_view(), name="message-read"),
    path(
        "messages/<int:message_id>/statuses/",
        MessageStatusListView.as_view(),
        name="message-statuses",
    ),
    path("users/search/", UserSearchView.as_view(), name="user-search"),
    path("presence/<uuid:user_id>/", UserPresenceView.as_view(), name="presence-user"),
]
