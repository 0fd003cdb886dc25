"""
Client chat session.

ChatSession keeps the state one client shows: the room list and the
timeline of the open room. It talks to the server through a Transport and
applies every change through the pure functions in chat.client.state.

Open sequence:
    1. subscribe to the room, so pushes from here on are not missed
    2. fetch the newest history page
    3. baseline the timeline from the page, then merge any pushes that
       arrived while the fetch was in flight

Reconnect repeats the same sequence for the open room.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Protocol

from django.utils import timezone

from chat.client.state import (
    ClientMessage,
    RoomList,
    RoomTimeline,
    add_optimistic,
    confirm_optimistic,
    discard_optimistic,
    merge_incoming,
    open_timeline,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What a session needs from the server side."""

    def fetch_rooms(self) -> list[dict[str, Any]]: ...

    def fetch_page(self, room_id: int, page: int = 1) -> list[ClientMessage]: ...

    def send_message(self, room_id: int, content: str) -> ClientMessage: ...

    def subscribe(
        self,
        connection_id: str,
        room_id: int,
        on_push: Callable[[dict[str, Any]], None],
    ) -> None: ...

    def unsubscribe(self, connection_id: str, room_id: int) -> None: ...

    def close(self, connection_id: str) -> None: ...


class ChatSession:
    """
    One signed-in client.

    Attributes:
        user_id: The signed-in user
        connection_id: Identifies this session's subscriptions
        rooms: Room list, bumped by every push
        timeline: Open room's messages, or None when no room is open
    """

    def __init__(self, transport: Transport, user_id: int):
        self.transport = transport
        self.user_id = user_id
        self.connection_id = f"session-{uuid.uuid4().hex}"
        self.rooms = RoomList(user_id=user_id)
        self.timeline: RoomTimeline | None = None

    @property
    def room_id(self) -> int | None:
        return self.timeline.room_id if self.timeline else None

    @property
    def messages(self) -> tuple[ClientMessage, ...]:
        return self.timeline.messages if self.timeline else ()

    def load_rooms(self) -> RoomList:
        self.rooms = RoomList.from_payload(self.user_id, self.transport.fetch_rooms())
        return self.rooms

    def open_room(self, room_id: int) -> RoomTimeline:
        """Switch to a room. Leaves the previously open room first."""
        if self.timeline is not None and self.timeline.room_id != room_id:
            self.close_room()

        self.transport.subscribe(self.connection_id, room_id, self.on_push)
        return self._load_baseline(room_id)

    def close_room(self) -> None:
        if self.timeline is None:
            return
        self.transport.unsubscribe(self.connection_id, self.timeline.room_id)
        self.timeline = None

    def close(self) -> None:
        """Sign out: leave the open room and release every subscription."""
        self.close_room()
        self.transport.close(self.connection_id)

    def send(self, content: str) -> ClientMessage:
        """
        Send to the open room.

        The message shows immediately as an optimistic entry. On success it
        is replaced by the stored message; on failure it is removed and the
        transport's error propagates.
        """
        if self.timeline is None:
            raise RuntimeError("No room is open")

        room_id = self.timeline.room_id
        self.timeline, local_ref = add_optimistic(
            self.timeline, self.user_id, content, timezone.now()
        )
        try:
            stored = self.transport.send_message(room_id, content)
        except Exception:
            if self.timeline is not None:
                self.timeline = discard_optimistic(self.timeline, local_ref)
            raise

        if self.timeline is not None and self.timeline.room_id == room_id:
            self.timeline = confirm_optimistic(self.timeline, local_ref, stored)
        self.rooms = self.rooms.bump(room_id, stored)
        return stored

    def on_push(self, payload: dict[str, Any]) -> None:
        """Apply a live push (a MessageSerializer payload)."""
        message = ClientMessage.from_payload(payload)
        self.rooms = self.rooms.bump(message.room_id, message)
        if self.timeline is not None:
            self.timeline = merge_incoming(self.timeline, message)

    def on_reconnect(self) -> None:
        """Resubscribe and re-baseline after the push channel dropped."""
        if self.timeline is None:
            return
        room_id = self.timeline.room_id
        logger.info(f"Session {self.connection_id} re-baselining room {room_id}")
        self.transport.subscribe(self.connection_id, room_id, self.on_push)
        self._load_baseline(room_id)

    def _load_baseline(self, room_id: int) -> RoomTimeline:
        pending = self.timeline if self.timeline and self.timeline.room_id == room_id else None
        self.timeline = pending or RoomTimeline(room_id=room_id)

        page = self.transport.fetch_page(room_id)

        # self.timeline now also holds pushes that raced the fetch
        baseline = open_timeline(room_id, page)
        for message in self.timeline.messages:
            baseline = merge_incoming(baseline, message)
        self.timeline = baseline
        return baseline
