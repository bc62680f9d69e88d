"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - Single realtime connection per client; the gateway
               subscribes it to every conversation of the user

Authentication:
    JWT access token via ?token=, an Authorization: Bearer header or the
    ["jwt", <token>] subprotocol. JWTAuthMiddleware (config/asgi.py)
    attaches the user to the consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path("ws/chat/", consumers.ChatConsumer.as_asgi()),
]
