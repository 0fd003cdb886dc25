"""
In-process Transport for ChatSession.

Calls the service layer directly as the bound user and subscribes through
the delivery fanout with a listener, so a session sees exactly the payloads
a WebSocket client would. Used for in-process clients and tests.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

from chat.client.state import ClientMessage
from chat.fanout import get_fanout
from chat.serializers import MessageSerializer, RoomSerializer
from chat.services import MessageService, RoomService

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from authentication.models import User
    from chat.fanout import DeliveryFanout
    from core.services import ServiceResult

logger = logging.getLogger(__name__)

ERROR_EXCEPTIONS: dict[str, type[BaseApplicationError]] = {
    "NOT_PARTICIPANT": PermissionDeniedError,
    "USER_NOT_FOUND": NotFoundError,
    "MESSAGE_NOT_FOUND": NotFoundError,
}


def raise_for_result(result: ServiceResult) -> None:
    """Raise the core exception matching a failed result's error code."""
    if result.success:
        return
    exc_class = ERROR_EXCEPTIONS.get(result.error_code, ValidationError)
    raise exc_class(result.error, error_code=result.error_code)


class LocalTransport:
    """
    Transport bound to one user inside the server process.

    Args:
        user: The user every call acts as
        fanout: Delivery fanout; defaults to the process-wide one
    """

    def __init__(self, user: User, fanout: DeliveryFanout | None = None):
        self.user = user
        self._fanout = fanout

    @property
    def fanout(self) -> DeliveryFanout:
        return self._fanout or get_fanout()

    def fetch_rooms(self) -> list[dict[str, Any]]:
        rooms = RoomService.list_rooms_for(self.user)
        return list(RoomSerializer(rooms, many=True, context={"user": self.user}).data)

    def fetch_page(self, room_id: int, page: int = 1) -> list[ClientMessage]:
        result = MessageService.list_page(room_id, self.user, page=page)
        raise_for_result(result)
        return [
            ClientMessage.from_payload(item)
            for item in MessageSerializer(result.data, many=True).data
        ]

    def send_message(self, room_id: int, content: str) -> ClientMessage:
        result = MessageService.append(room_id, self.user, content)
        raise_for_result(result)
        return ClientMessage.from_payload(MessageSerializer(result.data).data)

    def subscribe(
        self,
        connection_id: str,
        room_id: int,
        on_push: Callable[[dict[str, Any]], None],
    ) -> None:
        room = RoomService.get_room_for_participant(room_id, self.user)
        if room is None:
            raise PermissionDeniedError("Access denied", error_code="NOT_PARTICIPANT")
        self.fanout.subscribe(connection_id, room_id, listener=on_push)

    def unsubscribe(self, connection_id: str, room_id: int) -> None:
        self.fanout.unsubscribe(connection_id, room_id)

    def close(self, connection_id: str) -> None:
        rooms = self.fanout.unsubscribe_all(connection_id)
        logger.debug(f"Local connection {connection_id} closed, left rooms {sorted(rooms)}")
