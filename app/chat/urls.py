"""
URL configuration for chat API.

URL Structure:
    Rooms:
        /room/                      POST  resolve private room {other_user_id}
        /rooms/                     GET   room directory

    Messages:
        /messages/                  POST  send {room_id, content}
        /messages/{room_id}/        GET   history page (?page=&limit=)
        /messages/{id}/read/        PUT   mark read

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import path

from chat.views import (
    MessageCreateView,
    MessageListView,
    MessageReadView,
    ResolveRoomView,
    RoomListView,
)

app_name = "chat"

urlpatterns = [
    path("room/", ResolveRoomView.as_view(), name="room-resolve"),
    path("rooms/", RoomListView.as_view(), name="room-list"),
    path("messages/", MessageCreateView.as_view(), name="message-create"),
    path("messages/<int:room_id>/", MessageListView.as_view(), name="message-list"),
    path(
        "messages/<int:message_id>/read/",
        MessageReadView.as_view(),
        name="message-read",
    ),
]
