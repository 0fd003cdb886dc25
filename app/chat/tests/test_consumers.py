"""
Tests for the chat WebSocket consumer.

Each test builds the ASGI stack (JWT middleware + URL router) and drives it
with channels.testing.WebsocketCommunicator. Scenarios are coroutines run
with async_to_sync so fixtures stay synchronous.

The database is used transactionally: database_sync_to_async closes old
connections, which does not mix with the per-test atomic block.
"""

import pytest
from asgiref.sync import async_to_sync
from channels.db import database_sync_to_async
from channels.routing import URLRouter
from channels.testing import WebsocketCommunicator
from rest_framework_simplejwt.tokens import AccessToken

from authentication.middleware import JWTAuthMiddleware
from chat.consumers import UNAUTHENTICATED_CLOSE_CODE
from chat.models import Message
from chat.routing import websocket_urlpatterns
from chat.services import MessageService

pytestmark = pytest.mark.django_db(transaction=True)

application = JWTAuthMiddleware(URLRouter(websocket_urlpatterns))


def communicator_for(user=None) -> WebsocketCommunicator:
    path = "/ws/chat/"
    if user is not None:
        path += f"?token={AccessToken.for_user(user)}"
    return WebsocketCommunicator(application, path)


async def join(communicator, room_id):
    await communicator.send_json_to({"type": "join-room", "room_id": room_id})
    return await communicator.receive_json_from()


class TestConnect:
    def test_anonymous_connection_is_closed_with_4001(self, db):
        async def scenario():
            communicator = communicator_for()
            connected, code = await communicator.connect()
            return connected, code

        connected, code = async_to_sync(scenario)()

        assert connected is False
        assert code == UNAUTHENTICATED_CLOSE_CODE

    def test_invalid_token_is_closed_with_4001(self, db):
        async def scenario():
            communicator = WebsocketCommunicator(application, "/ws/chat/?token=nope")
            return await communicator.connect()

        connected, code = async_to_sync(scenario)()

        assert connected is False
        assert code == UNAUTHENTICATED_CLOSE_CODE

    def test_token_in_subprotocol_is_accepted(self, ana):
        async def scenario():
            communicator = WebsocketCommunicator(
                application,
                "/ws/chat/",
                subprotocols=["jwt", str(AccessToken.for_user(ana))],
            )
            connected, subprotocol = await communicator.connect()
            await communicator.disconnect()
            return connected, subprotocol

        assert async_to_sync(scenario)() == (True, "jwt")


class TestJoinAndLeave:
    def test_participant_joins(self, ana, private_room, fanout):
        async def scenario():
            communicator = communicator_for(ana)
            await communicator.connect()
            frame = await join(communicator, private_room.id)
            subscribed = fanout.registry.connections_for(private_room.id)
            await communicator.disconnect()
            return frame, subscribed

        frame, subscribed = async_to_sync(scenario)()

        assert frame == {"type": "joined", "room_id": private_room.id}
        assert len(subscribed) == 1

    def test_outsider_cannot_join(self, outsider, private_room, fanout):
        async def scenario():
            communicator = communicator_for(outsider)
            await communicator.connect()
            frame = await join(communicator, private_room.id)
            await communicator.disconnect()
            return frame

        frame = async_to_sync(scenario)()

        assert frame["type"] == "error"
        assert frame["error_code"] == "NOT_PARTICIPANT"
        assert fanout.registry.connections_for(private_room.id) == set()

    def test_disconnect_drops_subscriptions(self, ana, private_room, fanout):
        async def scenario():
            communicator = communicator_for(ana)
            await communicator.connect()
            await join(communicator, private_room.id)
            await communicator.disconnect()

        async_to_sync(scenario)()

        assert fanout.registry.connections_for(private_room.id) == set()

    def test_left_room_receives_no_pushes(self, ana, ben, private_room):
        async def scenario():
            communicator = communicator_for(ana)
            await communicator.connect()
            await join(communicator, private_room.id)
            await communicator.send_json_to(
                {"type": "leave-room", "room_id": private_room.id}
            )
            left = await communicator.receive_json_from()
            await database_sync_to_async(MessageService.append)(
                private_room.id, ben, "after leave"
            )
            quiet = await communicator.receive_nothing(timeout=0.2)
            await communicator.disconnect()
            return left, quiet

        left, quiet = async_to_sync(scenario)()

        assert left == {"type": "left", "room_id": private_room.id}
        assert quiet is True


class TestSendMessage:
    def test_sender_gets_ack_and_both_get_the_push(self, ana, ben, private_room):
        async def scenario():
            ana_ws = communicator_for(ana)
            ben_ws = communicator_for(ben)
            await ana_ws.connect()
            await ben_ws.connect()
            await join(ana_ws, private_room.id)
            await join(ben_ws, private_room.id)

            await ana_ws.send_json_to(
                {
                    "type": "send-message",
                    "room_id": private_room.id,
                    "content": "hi",
                    "local_ref": "ref-1",
                }
            )
            ana_frames = [
                await ana_ws.receive_json_from(),
                await ana_ws.receive_json_from(),
            ]
            ben_frame = await ben_ws.receive_json_from()

            await ana_ws.disconnect()
            await ben_ws.disconnect()
            return ana_frames, ben_frame

        ana_frames, ben_frame = async_to_sync(scenario)()

        by_type = {frame["type"]: frame for frame in ana_frames}
        stored = Message.objects.get()
        assert by_type["message-sent"]["local_ref"] == "ref-1"
        assert by_type["message-sent"]["message"]["id"] == stored.id
        assert by_type["receive-message"]["message"]["id"] == stored.id
        assert ben_frame == {
            "type": "receive-message",
            "room_id": private_room.id,
            "message": by_type["receive-message"]["message"],
        }

    def test_empty_content_is_rejected(self, ana, private_room):
        async def scenario():
            communicator = communicator_for(ana)
            await communicator.connect()
            await communicator.send_json_to(
                {"type": "send-message", "room_id": private_room.id, "content": " "}
            )
            frame = await communicator.receive_json_from()
            await communicator.disconnect()
            return frame

        frame = async_to_sync(scenario)()

        assert frame["error_code"] == "EMPTY_CONTENT"
        assert Message.objects.count() == 0


class TestFrameValidation:
    @pytest.mark.parametrize(
        "frame, error_code",
        [
            ({"type": "dance", "room_id": 1}, "UNKNOWN_TYPE"),
            ({"type": "join-room", "room_id": "1"}, "INVALID_FRAME"),
            ({"type": "join-room", "room_id": True}, "INVALID_FRAME"),
            ({"type": "join-room"}, "INVALID_FRAME"),
            ([1, 2], "INVALID_FRAME"),
        ],
    )
    def test_bad_frames_get_error_replies(self, ana, frame, error_code):
        async def scenario():
            communicator = communicator_for(ana)
            await communicator.connect()
            await communicator.send_json_to(frame)
            reply = await communicator.receive_json_from()
            await communicator.disconnect()
            return reply

        reply = async_to_sync(scenario)()

        assert reply["type"] == "error"
        assert reply["error_code"] == error_code
