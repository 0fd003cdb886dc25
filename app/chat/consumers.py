"""
WebSocket consumer for the chat application.

One connection serves every room the client has joined. Subscriptions go
through chat.fanout, which keeps the registry and the channel layer groups
in step.

Authentication:
    authentication.middleware.JWTAuthMiddleware attaches the user to
    self.scope["user"]. Anonymous connections are closed with code 4001.

Frames (from client):
    {"type": "join-room", "room_id": 1}
    {"type": "leave-room", "room_id": 1}
    {"type": "send-message", "room_id": 1, "content": "hi", "local_ref": "..."}

Frames (to client):
    {"type": "joined", "room_id": 1}
    {"type": "left", "room_id": 1}
    {"type": "message-sent", "local_ref": "...", "message": {...}}
    {"type": "receive-message", "room_id": 1, "message": {...}}
    {"type": "error", "error_code": "...", "message": "..."}

send-message is a convenience over the same MessageService.append used by
the REST API. The stored message reaches every subscriber, the sender
included, through fanout after commit.
"""

from __future__ import annotations

import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.contrib.auth.models import AnonymousUser
from django.db import OperationalError

from chat.fanout import get_fanout
from chat.serializers import MessageSerializer
from chat.services import MessageService, RoomService

logger = logging.getLogger(__name__)

UNAUTHENTICATED_CLOSE_CODE = 4001


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for live chat delivery.

    Handles:
        - Connection authentication
        - Joining/leaving room subscriptions (membership checked first)
        - Sending messages through the service layer
        - Forwarding chat.message events to the client
    """

    async def connect(self):
        user = self.scope.get("user")

        if not user or isinstance(user, AnonymousUser):
            logger.warning("Rejected unauthenticated chat connection")
            await self.close(code=UNAUTHENTICATED_CLOSE_CODE)
            return

        # Browsers require the chosen subprotocol echoed back
        subprotocol = "jwt" if "jwt" in self.scope.get("subprotocols", []) else None
        await self.accept(subprotocol=subprotocol)
        logger.info(f"User {user.id} connected as {self.channel_name}")

    async def disconnect(self, close_code):
        rooms = await get_fanout().aunsubscribe_all(self.channel_name)

        user = self.scope.get("user")
        if user and not isinstance(user, AnonymousUser):
            logger.info(
                f"User {user.id} disconnected ({close_code}), "
                f"dropped {len(rooms)} subscriptions"
            )

    async def receive_json(self, content, **kwargs):
        """Dispatch a client frame by its type."""
        if not isinstance(content, dict):
            await self._send_error("INVALID_FRAME", "Frame must be a JSON object")
            return

        handlers = {
            "join-room": self._handle_join,
            "leave-room": self._handle_leave,
            "send-message": self._handle_send,
        }
        frame_type = content.get("type")
        handler = handlers.get(frame_type)
        if handler is None:
            await self._send_error(
                "UNKNOWN_TYPE", f"Unknown message type: {frame_type}"
            )
            return

        room_id = content.get("room_id")
        if not isinstance(room_id, int) or isinstance(room_id, bool):
            await self._send_error("INVALID_FRAME", "room_id must be an integer")
            return

        await handler(room_id, content)

    async def _handle_join(self, room_id: int, content: dict):
        user = self.scope["user"]
        try:
            room = await database_sync_to_async(RoomService.get_room_for_participant)(
                room_id, user
            )
        except OperationalError:
            logger.warning(f"Membership check for room {room_id} failed transiently")
            await self._send_error("TRANSIENT", "Temporarily unavailable, please retry")
            return

        if room is None:
            await self._send_error("NOT_PARTICIPANT", "Access denied")
            return

        await get_fanout().asubscribe(self.channel_name, room_id)
        await self.send_json({"type": "joined", "room_id": room_id})

    async def _handle_leave(self, room_id: int, content: dict):
        await get_fanout().aunsubscribe(self.channel_name, room_id)
        await self.send_json({"type": "left", "room_id": room_id})

    async def _handle_send(self, room_id: int, content: dict):
        text = content.get("content")
        if not isinstance(text, str):
            text = ""

        try:
            result = await self._append(room_id, text)
        except OperationalError:
            logger.warning(f"Append to room {room_id} failed transiently")
            await self._send_error("TRANSIENT", "Temporarily unavailable, please retry")
            return

        if not result["success"]:
            await self._send_error(result["error_code"], result["error"])
            return

        await self.send_json(
            {
                "type": "message-sent",
                "local_ref": content.get("local_ref"),
                "message": result["data"],
            }
        )

    async def chat_message(self, event):
        """Forward a chat.message event from the channel layer."""
        await self.send_json(
            {
                "type": "receive-message",
                "room_id": event["room_id"],
                "message": event["message"],
            }
        )

    async def _send_error(self, error_code: str, message: str):
        await self.send_json(
            {"type": "error", "error_code": error_code, "message": message}
        )

    @database_sync_to_async
    def _append(self, room_id: int, text: str) -> dict:
        result = MessageService.append(room_id, self.scope["user"], text)
        if not result.success:
            return {
                "success": False,
                "error": result.error,
                "error_code": result.error_code,
            }
        return {"success": True, "data": dict(MessageSerializer(result.data).data)}
