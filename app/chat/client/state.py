"""
Client reconciliation state.

A RoomTimeline is the ordered, de-duplicated view of one open room. It is
built from a fetched history page and then updated by optimistic sends,
send confirmations and live pushes.

Every function here is pure: it returns the same object when the input
changes nothing, and a new object when it does. Callers detect change with
an identity check and never need to poll or force a refresh.

Dedup rules:
    - Stored messages are keyed by their server id.
    - An optimistic entry (no id yet) is matched only by a stored message
      from the same sender with the same content, stamped within
      OPTIMISTIC_MATCH_WINDOW of the optimistic entry.
    - Messages from different senders are never merged.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from django.utils.dateparse import parse_datetime

from chat.constants import CLIENT_CONFIG

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import Any

OPTIMISTIC_MATCH_WINDOW = timedelta(seconds=CLIENT_CONFIG.OPTIMISTIC_MATCH_WINDOW_SECONDS)


@dataclass(frozen=True)
class ClientMessage:
    """
    A message as held by a client.

    id is None while the entry is optimistic; local_ref is set only then.
    """

    id: int | None
    room_id: int
    sender_id: int
    content: str
    created_at: datetime
    is_read: bool = False
    local_ref: str | None = None

    @property
    def is_optimistic(self) -> bool:
        return self.id is None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ClientMessage:
        """Build from the JSON shape of chat.serializers.MessageSerializer."""
        created_at = payload["created_at"]
        if isinstance(created_at, str):
            created_at = parse_datetime(created_at)
            if created_at is None:
                raise ValueError(f"Invalid created_at: {payload['created_at']!r}")
        return cls(
            id=payload["id"],
            room_id=payload["room_id"],
            sender_id=payload["sender_id"],
            content=payload["content"],
            created_at=created_at,
            is_read=payload.get("is_read", False),
        )


def _sort_key(message: ClientMessage):
    # Optimistic entries go after confirmed ones with the same timestamp
    return (message.created_at, message.is_optimistic, message.id or 0)


def _ordered(messages: Iterable[ClientMessage]) -> tuple[ClientMessage, ...]:
    return tuple(sorted(messages, key=_sort_key))


@dataclass(frozen=True)
class RoomTimeline:
    """Ordered messages of one room, oldest first."""

    room_id: int
    messages: tuple[ClientMessage, ...] = ()

    @property
    def ids(self) -> frozenset[int]:
        return frozenset(m.id for m in self.messages if m.id is not None)

    def __len__(self) -> int:
        return len(self.messages)


def open_timeline(room_id: int, page: Iterable[ClientMessage]) -> RoomTimeline:
    """
    Baseline a room from a fetched history page.

    Messages of other rooms and repeated ids are dropped.
    """
    seen: set[int] = set()
    kept = []
    for message in page:
        if message.room_id != room_id or message.id in seen:
            continue
        if message.id is not None:
            seen.add(message.id)
        kept.append(message)
    return RoomTimeline(room_id=room_id, messages=_ordered(kept))


def add_optimistic(
    timeline: RoomTimeline,
    sender_id: int,
    content: str,
    now: datetime,
) -> tuple[RoomTimeline, str]:
    """
    Show a message before the server confirms it.

    Returns the new timeline and the local_ref that identifies the entry
    for confirm_optimistic/discard_optimistic.
    """
    local_ref = uuid.uuid4().hex
    entry = ClientMessage(
        id=None,
        room_id=timeline.room_id,
        sender_id=sender_id,
        content=content,
        created_at=now,
        local_ref=local_ref,
    )
    return replace(timeline, messages=_ordered([*timeline.messages, entry])), local_ref


def confirm_optimistic(
    timeline: RoomTimeline,
    local_ref: str,
    stored: ClientMessage,
) -> RoomTimeline:
    """
    Replace an optimistic entry with the stored message.

    If the push for the stored message already arrived, the optimistic
    entry was matched then and this only ensures the stored one is present.
    """
    pending = [m for m in timeline.messages if m.local_ref == local_ref]
    if not pending:
        return merge_incoming(timeline, stored)

    rest = [m for m in timeline.messages if m.local_ref != local_ref]
    if stored.id is not None and stored.id in timeline.ids:
        return replace(timeline, messages=tuple(rest))
    return replace(timeline, messages=_ordered([*rest, stored]))


def discard_optimistic(timeline: RoomTimeline, local_ref: str) -> RoomTimeline:
    """Drop an optimistic entry whose send failed."""
    rest = tuple(m for m in timeline.messages if m.local_ref != local_ref)
    if len(rest) == len(timeline.messages):
        return timeline
    return replace(timeline, messages=rest)


def _matches_optimistic(entry: ClientMessage, incoming: ClientMessage) -> bool:
    return (
        entry.is_optimistic
        and entry.sender_id == incoming.sender_id
        and entry.content == incoming.content
        and abs(incoming.created_at - entry.created_at) <= OPTIMISTIC_MATCH_WINDOW
    )


def merge_incoming(timeline: RoomTimeline, message: ClientMessage) -> RoomTimeline:
    """
    Merge a pushed or fetched message into the timeline.

    Returns the same timeline when the message belongs to another room or
    is already present.
    """
    if message.room_id != timeline.room_id:
        return timeline

    if message.id is not None:
        if message.id in timeline.ids:
            return timeline
    elif any(
        m.sender_id == message.sender_id
        and m.content == message.content
        and abs(m.created_at - message.created_at) <= OPTIMISTIC_MATCH_WINDOW
        for m in timeline.messages
    ):
        return timeline

    messages = list(timeline.messages)
    if message.id is not None:
        for index, entry in enumerate(messages):
            if _matches_optimistic(entry, message):
                del messages[index]
                break

    return replace(timeline, messages=_ordered([*messages, message]))


@dataclass(frozen=True)
class RoomSummary:
    """One row of the client's room list."""

    room_id: int
    display_name: str = ""
    last_message: ClientMessage | None = None
    is_unread: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RoomSummary:
        """Build from the JSON shape of chat.serializers.RoomSerializer."""
        last = payload.get("last_message")
        return cls(
            room_id=payload["id"],
            display_name=payload.get("display_name", ""),
            last_message=ClientMessage.from_payload(last) if last else None,
            is_unread=payload.get("is_unread", False),
        )


@dataclass(frozen=True)
class RoomList:
    """The viewer's rooms, most recently active first."""

    user_id: int
    rooms: tuple[RoomSummary, ...] = field(default=())

    @classmethod
    def from_payload(cls, user_id: int, payload: Iterable[dict[str, Any]]) -> RoomList:
        return cls(
            user_id=user_id,
            rooms=tuple(RoomSummary.from_payload(item) for item in payload),
        )

    def bump(self, room_id: int, message: ClientMessage) -> RoomList:
        """
        Move a room to the top with a new last message.

        Pushes older than the current last message leave the list unchanged.
        """
        current = next((r for r in self.rooms if r.room_id == room_id), None)
        if current is not None and current.last_message is not None:
            last = current.last_message
            if last.id == message.id or _sort_key(message) < _sort_key(last):
                return self

        summary = RoomSummary(
            room_id=room_id,
            display_name=current.display_name if current else "",
            last_message=message,
            is_unread=message.sender_id != self.user_id and not message.is_read,
        )
        others = tuple(r for r in self.rooms if r.room_id != room_id)
        return replace(self, rooms=(summary, *others))
