"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - One connection per client; rooms are joined with frames

Authentication:
    JWT access token as query parameter: ?token=<jwt_access_token>
    authentication.middleware.JWTAuthMiddleware validates it and attaches
    the user to the consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path("ws/chat/", consumers.ChatConsumer.as_asgi()),
]
