"""
Live delivery of stored messages to subscribed connections.

Components:
    SubscriptionRegistry: connection_id <-> room_id bookkeeping
    DeliveryFanout: subscribe/unsubscribe lifecycle and publish

Two kinds of connection can subscribe:
    - Channels connections (WebSocket consumers). The connection id is the
      consumer's channel name and delivery goes through a channel layer
      group per room, so the layer backend (in-memory or Redis) decides
      how far a publish reaches.
    - In-process listeners (chat.client.transport.LocalTransport). The
      connection id is arbitrary and delivery is a direct call.

Delivery is best effort. A failing listener or channel layer is logged and
skipped; it never fails the append that triggered the publish, and a
connection that missed a push recovers through a history fetch. A listener
that raises is dropped from every room it was subscribed to.

Publishing runs on the thread that committed the message, so its cost is
bounded: local listeners only merge state in memory, and the channel layer
send is cut off after FANOUT_CONFIG.PUBLISH_TIMEOUT_SECONDS.

Usage:
    from chat.fanout import get_fanout

    fanout = get_fanout()
    await fanout.asubscribe(self.channel_name, room.id)
    ...
    fanout.publish_message(message)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from chat.constants import FANOUT_CONFIG

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from chat.models import Message

    Listener = Callable[[dict[str, Any]], None]

logger = logging.getLogger(__name__)


def room_group_name(room_id: int) -> str:
    """Channel layer group for a room."""
    return f"{FANOUT_CONFIG.GROUP_PREFIX}{room_id}"


class SubscriptionRegistry:
    """
    Thread-safe two-way index of live subscriptions.

    connection_id -> set of room ids
    room_id -> set of connection ids

    Both directions are updated under one lock so a reader never sees a
    connection listed under a room it is not subscribed to.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._rooms_by_connection: dict[str, set[int]] = defaultdict(set)
        self._connections_by_room: dict[int, set[str]] = defaultdict(set)

    def add(self, connection_id: str, room_id: int) -> bool:
        """Record a subscription. Returns False if it already existed."""
        with self._lock:
            rooms = self._rooms_by_connection[connection_id]
            if room_id in rooms:
                return False
            rooms.add(room_id)
            self._connections_by_room[room_id].add(connection_id)
            return True

    def discard(self, connection_id: str, room_id: int) -> bool:
        """Remove one subscription. Returns False if there was none."""
        with self._lock:
            rooms = self._rooms_by_connection.get(connection_id)
            if not rooms or room_id not in rooms:
                return False
            rooms.discard(room_id)
            if not rooms:
                del self._rooms_by_connection[connection_id]
            connections = self._connections_by_room[room_id]
            connections.discard(connection_id)
            if not connections:
                del self._connections_by_room[room_id]
            return True

    def discard_connection(self, connection_id: str) -> set[int]:
        """Remove every subscription of a connection; return the rooms it had."""
        with self._lock:
            rooms = self._rooms_by_connection.pop(connection_id, set())
            for room_id in rooms:
                connections = self._connections_by_room[room_id]
                connections.discard(connection_id)
                if not connections:
                    del self._connections_by_room[room_id]
            return rooms

    def rooms_for(self, connection_id: str) -> set[int]:
        with self._lock:
            return set(self._rooms_by_connection.get(connection_id, ()))

    def connections_for(self, room_id: int) -> set[str]:
        with self._lock:
            return set(self._connections_by_room.get(room_id, ()))


class DeliveryFanout:
    """
    Subscribe connections to rooms and push stored messages to them.

    Subscribing does not check room membership. Callers (the WebSocket
    consumer, the client transport) verify membership first.

    Every operation has a sync form for request/worker threads and an
    async form (a-prefixed) for consumers running on the event loop.

    Args:
        channel_layer: Channels layer; defaults to the configured one,
            resolved on first use
        registry: Subscription index; defaults to a fresh registry
    """

    def __init__(self, channel_layer=None, registry: SubscriptionRegistry | None = None):
        self._channel_layer = channel_layer
        self.registry = registry or SubscriptionRegistry()
        self._listeners: dict[str, Listener] = {}
        self._listeners_lock = threading.Lock()

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    # -------------------------------------------------------------------------
    # Subscription lifecycle
    # -------------------------------------------------------------------------

    async def asubscribe(self, connection_id: str, room_id: int) -> None:
        """Subscribe a Channels connection (channel name) to a room."""
        if not self.registry.add(connection_id, room_id):
            return
        await self.channel_layer.group_add(room_group_name(room_id), connection_id)
        logger.debug(f"Connection {connection_id} subscribed to room {room_id}")

    async def aunsubscribe(self, connection_id: str, room_id: int) -> None:
        if not self.registry.discard(connection_id, room_id):
            return
        await self.channel_layer.group_discard(room_group_name(room_id), connection_id)
        logger.debug(f"Connection {connection_id} unsubscribed from room {room_id}")

    async def aunsubscribe_all(self, connection_id: str) -> set[int]:
        """Connection teardown: drop every subscription it holds."""
        rooms = self.registry.discard_connection(connection_id)
        for room_id in rooms:
            await self.channel_layer.group_discard(
                room_group_name(room_id), connection_id
            )
        if rooms:
            logger.debug(
                f"Connection {connection_id} torn down, left rooms {sorted(rooms)}"
            )
        return rooms

    def subscribe(
        self,
        connection_id: str,
        room_id: int,
        listener: Listener | None = None,
    ) -> None:
        """
        Subscribe a connection to a room. Idempotent per (connection, room).

        With a listener the connection is in-process and receives payloads
        by direct call; without one, connection_id must be a channel name.
        """
        if listener is None:
            async_to_sync(self.asubscribe)(connection_id, room_id)
            return

        with self._listeners_lock:
            self._listeners[connection_id] = listener
            self.registry.add(connection_id, room_id)

    def unsubscribe(self, connection_id: str, room_id: int) -> None:
        if self._is_local(connection_id):
            with self._listeners_lock:
                self.registry.discard(connection_id, room_id)
                # The listener goes with the last room
                if not self.registry.rooms_for(connection_id):
                    self._listeners.pop(connection_id, None)
            return
        async_to_sync(self.aunsubscribe)(connection_id, room_id)

    def unsubscribe_all(self, connection_id: str) -> set[int]:
        if self._is_local(connection_id):
            return self._drop_local(connection_id)
        return async_to_sync(self.aunsubscribe_all)(connection_id)

    def _is_local(self, connection_id: str) -> bool:
        with self._listeners_lock:
            return connection_id in self._listeners

    def _drop_local(self, connection_id: str) -> set[int]:
        with self._listeners_lock:
            self._listeners.pop(connection_id, None)
            return self.registry.discard_connection(connection_id)

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    async def apublish(self, room_id: int, payload: dict[str, Any]) -> None:
        """Async form of publish(); same swallowing semantics."""
        self._deliver_local(room_id, payload)
        await self._group_send(room_id, payload)

    def publish(self, room_id: int, payload: dict[str, Any]) -> None:
        """
        Deliver a serialized message to every connection subscribed to a room.

        The sender's own connections are included. Never raises, and never
        waits on the channel layer longer than
        FANOUT_CONFIG.PUBLISH_TIMEOUT_SECONDS.
        """
        self._deliver_local(room_id, payload)
        async_to_sync(self._group_send)(room_id, payload)

    def publish_message(self, message: Message) -> None:
        """Serialize a stored message and publish it to its room."""
        from chat.serializers import MessageSerializer

        payload = dict(MessageSerializer(message).data)
        self.publish(message.room_id, payload)

    async def _group_send(self, room_id: int, payload: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(
                self.channel_layer.group_send(
                    room_group_name(room_id),
                    {
                        "type": FANOUT_CONFIG.MESSAGE_EVENT_TYPE,
                        "room_id": room_id,
                        "message": payload,
                    },
                ),
                timeout=FANOUT_CONFIG.PUBLISH_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Channel layer publish to room {room_id} timed out after "
                f"{FANOUT_CONFIG.PUBLISH_TIMEOUT_SECONDS}s"
            )
        except Exception:
            logger.exception(f"Channel layer publish to room {room_id} failed")

    def _deliver_local(self, room_id: int, payload: dict[str, Any]) -> None:
        with self._listeners_lock:
            targets = [
                (connection_id, self._listeners[connection_id])
                for connection_id in self.registry.connections_for(room_id)
                if connection_id in self._listeners
            ]

        dead = []
        for connection_id, listener in targets:
            try:
                listener(payload)
            except Exception:
                logger.exception(
                    f"Dropping connection {connection_id} after failed push "
                    f"in room {room_id}"
                )
                dead.append(connection_id)

        for connection_id in dead:
            self._drop_local(connection_id)


_fanout: DeliveryFanout | None = None
_fanout_lock = threading.Lock()


def get_fanout() -> DeliveryFanout:
    """Return the process-wide fanout, creating it on first use."""
    global _fanout
    with _fanout_lock:
        if _fanout is None:
            _fanout = DeliveryFanout()
        return _fanout


def set_fanout(fanout: DeliveryFanout | None) -> None:
    """Replace the process-wide fanout (None resets to a lazy default)."""
    global _fanout
    with _fanout_lock:
        _fanout = fanout
