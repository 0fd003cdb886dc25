"""
Tests for chat service layer business logic.

- RoomService: private room resolution, groups, deactivation, directory
- MessageService: append, history pages, read state

Tests focus on observable behavior: ServiceResult success/failure states,
error codes and database state.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from unittest import mock

import pytest
from django.db import IntegrityError, OperationalError, connection
from django.utils import timezone
from freezegun import freeze_time

from authentication.tests.factories import UserFactory
from core.exceptions import ConflictError
from chat.models import Message, Participant, PrivateRoomPair, Room, RoomType
from chat.services import MessageService, RoomService
from chat.tests.factories import GroupRoomFactory, MessageFactory, ParticipantFactory


# =============================================================================
# RoomService.resolve_private_room
# =============================================================================


class TestResolvePrivateRoom:
    def test_creates_room_with_both_participants(self, ana, ben):
        result = RoomService.resolve_private_room(ana, ben.id)

        assert result.success is True
        assert result.created is True
        room = result.data
        assert room.room_type == RoomType.PRIVATE
        assert set(room.participants.values_list("user_id", flat=True)) == {
            ana.id,
            ben.id,
        }
        assert PrivateRoomPair.objects.filter(room=room).exists()

    def test_is_symmetric(self, ana, ben):
        first = RoomService.resolve_private_room(ana, ben.id)
        second = RoomService.resolve_private_room(ben, ana.id)

        assert second.success is True
        assert second.created is False
        assert second.data.id == first.data.id

    def test_repeated_resolution_yields_one_room(self, ana, ben):
        room_ids = {
            RoomService.resolve_private_room(ana, ben.id).data.id for _ in range(5)
        }

        assert len(room_ids) == 1
        assert Room.objects.count() == 1
        assert Participant.objects.count() == 2

    def test_existing_room_is_not_modified(self, ana, ben):
        room = RoomService.resolve_private_room(ana, ben.id).data
        updated_at = room.updated_at

        again = RoomService.resolve_private_room(ana, ben.id).data

        assert again.updated_at == updated_at

    def test_missing_participant(self, ana):
        for missing in (None, ""):
            result = RoomService.resolve_private_room(ana, missing)

            assert result.success is False
            assert result.error_code == "MISSING_PARTICIPANT"

    def test_same_user(self, ana):
        result = RoomService.resolve_private_room(ana, ana.id)

        assert result.error_code == "SAME_USER"
        assert Room.objects.count() == 0

    def test_unknown_user(self, ana):
        result = RoomService.resolve_private_room(ana, 999_999)

        assert result.error_code == "USER_NOT_FOUND"

    def test_inactive_user_is_not_found(self, ana):
        gone = UserFactory(is_active=False)

        result = RoomService.resolve_private_room(ana, gone.id)

        assert result.error_code == "USER_NOT_FOUND"

    def test_losing_a_creation_race_returns_the_winner(self, ana, ben):
        winner = RoomService.resolve_private_room(ana, ben.id).data

        # The loser looked before the winner committed, then hits the pair key
        with mock.patch.object(
            RoomService, "_find_private_room", side_effect=[None, winner]
        ):
            result = RoomService.resolve_private_room(ben, ana.id)

        assert result.success is True
        assert result.created is False
        assert result.data.id == winner.id
        assert Room.objects.count() == 1
        assert Participant.objects.count() == 2

    def test_integrity_error_without_pair_is_a_conflict(self, ana, ben):
        with (
            mock.patch.object(RoomService, "_find_private_room", return_value=None),
            mock.patch(
                "chat.services.PrivateRoomPair.objects.create",
                side_effect=IntegrityError("boom"),
            ),
            pytest.raises(ConflictError) as exc_info,
        ):
            RoomService.resolve_private_room(ana, ben.id)

        assert exc_info.value.error_code == "ROOM_CONFLICT"
        assert exc_info.value.status_code == 409
        assert isinstance(exc_info.value.__cause__, IntegrityError)
        assert Room.objects.count() == 0

    def test_deactivated_room_is_replaced_by_a_new_one(self, ana, ben):
        old = RoomService.resolve_private_room(ana, ben.id).data
        RoomService.deactivate(old)

        result = RoomService.resolve_private_room(ana, ben.id)

        assert result.created is True
        assert result.data.id != old.id


@pytest.mark.django_db(transaction=True)
class TestConcurrentResolvePrivateRoom:
    """Resolutions racing from separate threads, each on its own connection."""

    def test_concurrent_resolutions_share_one_room(self, ana, ben):
        workers = 6
        barrier = threading.Barrier(workers)

        def resolve(index):
            requester, other = (ana, ben) if index % 2 else (ben, ana)
            try:
                barrier.wait(timeout=5)
                return RoomService.resolve_private_room(requester, other.id)
            finally:
                connection.close()

        outcomes = []
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(resolve, index) for index in range(workers)]
            for future in futures:
                try:
                    outcomes.append(future.result())
                except OperationalError:
                    # SQLite rejects concurrent writers instead of queueing
                    # them; the caller sees a retryable error, never a
                    # second room
                    continue

        assert outcomes
        assert all(result.success for result in outcomes)
        assert len({result.data.id for result in outcomes}) == 1
        assert Room.objects.count() == 1
        assert PrivateRoomPair.objects.count() == 1
        assert Participant.objects.count() == 2


# =============================================================================
# RoomService.create_group / deactivate
# =============================================================================


class TestCreateGroup:
    def test_creator_is_first_participant(self, ana, ben, outsider):
        result = RoomService.create_group(ana, "Team", [ben.id, outsider.id])

        assert result.success is True
        assert result.created is True
        user_ids = list(result.data.participants.values_list("user_id", flat=True))
        assert user_ids[0] == ana.id
        assert set(user_ids) == {ana.id, ben.id, outsider.id}

    def test_duplicate_member_ids_are_collapsed(self, ana, ben):
        result = RoomService.create_group(ana, "Pair", [ben.id, ben.id, ana.id])

        assert result.data.participants.count() == 2

    def test_name_is_required(self, ana, ben):
        result = RoomService.create_group(ana, "   ", [ben.id])

        assert result.error_code == "INVALID_GROUP"

    def test_needs_another_member(self, ana):
        result = RoomService.create_group(ana, "Solo", [])

        assert result.error_code == "INVALID_GROUP"

    def test_unknown_member(self, ana):
        result = RoomService.create_group(ana, "Team", [999_999])

        assert result.error_code == "USER_NOT_FOUND"
        assert Room.objects.count() == 0


class TestDeactivate:
    def test_soft_deletes_and_releases_pair(self, private_room):
        result = RoomService.deactivate(private_room)

        assert result.success is True
        private_room.refresh_from_db()
        assert private_room.is_active is False
        assert not PrivateRoomPair.objects.filter(room=private_room).exists()

    def test_deactivating_twice_is_a_noop(self, private_room):
        RoomService.deactivate(private_room)
        deleted_at = private_room.deleted_at

        result = RoomService.deactivate(private_room)

        assert result.success is True
        assert private_room.deleted_at == deleted_at


# =============================================================================
# RoomService.list_rooms_for
# =============================================================================


class TestListRoomsFor:
    def test_most_recently_active_first(self, ana, ben, outsider):
        with freeze_time("2026-01-01 10:00:00"):
            older = RoomService.resolve_private_room(ana, ben.id).data
        with freeze_time("2026-01-01 11:00:00"):
            newer = RoomService.resolve_private_room(ana, outsider.id).data
        with freeze_time("2026-01-01 12:00:00"):
            MessageService.append(older.id, ben, "bump")

        rooms = RoomService.list_rooms_for(ana)

        assert [r.id for r in rooms] == [older.id, newer.id]

    def test_excludes_foreign_and_inactive_rooms(self, ana, ben, outsider, private_room):
        foreign = RoomService.resolve_private_room(ben, outsider.id).data
        gone = RoomService.resolve_private_room(ana, outsider.id).data
        RoomService.deactivate(gone)

        room_ids = [r.id for r in RoomService.list_rooms_for(ana)]

        assert room_ids == [private_room.id]
        assert foreign.id not in room_ids

    def test_unread_when_last_message_is_from_someone_else(self, ana, ben, private_room):
        MessageService.append(private_room.id, ben, "hello")

        [for_ana] = RoomService.list_rooms_for(ana)
        [for_ben] = RoomService.list_rooms_for(ben)

        assert for_ana.is_unread is True
        assert for_ben.is_unread is False

    def test_read_last_message_is_not_unread(self, ana, ben, private_room):
        message = MessageService.append(private_room.id, ben, "hello").data
        MessageService.mark_read(message.id, ana)

        [room] = RoomService.list_rooms_for(ana)

        assert room.is_unread is False


# =============================================================================
# MessageService.append
# =============================================================================


class TestAppend:
    def test_stores_message_and_updates_room(self, ana, private_room):
        result = MessageService.append(private_room.id, ana, "hi")

        assert result.success is True
        message = result.data
        private_room.refresh_from_db()
        assert private_room.last_message_id == message.id
        assert private_room.updated_at >= message.created_at
        assert message.is_read is False

    def test_keeps_surrounding_whitespace(self, ana, private_room):
        result = MessageService.append(private_room.id, ana, "  indented\n")

        assert result.data.content == "  indented\n"
        page = MessageService.list_page(private_room.id, ana).data
        assert page[0].content == "  indented\n"

    def test_empty_content(self, ana, private_room):
        result = MessageService.append(private_room.id, ana, "   ")

        assert result.error_code == "EMPTY_CONTENT"
        assert Message.objects.count() == 0

    def test_content_too_long(self, ana, private_room):
        result = MessageService.append(private_room.id, ana, "x" * 10_001)

        assert result.error_code == "CONTENT_TOO_LONG"

    def test_content_at_limit_is_accepted(self, ana, private_room):
        result = MessageService.append(private_room.id, ana, "x" * 10_000)

        assert result.success is True

    def test_non_participant_is_checked_before_content(self, outsider, private_room):
        result = MessageService.append(private_room.id, outsider, "")

        assert result.error_code == "NOT_PARTICIPANT"

    def test_unknown_room(self, ana):
        result = MessageService.append(999_999, ana, "hi")

        assert result.error_code == "NOT_PARTICIPANT"

    def test_inactive_room_rejects_appends(self, ana, private_room):
        RoomService.deactivate(private_room)

        result = MessageService.append(private_room.id, ana, "hi")

        assert result.error_code == "NOT_PARTICIPANT"

    def test_timestamps_never_go_backwards(self, ana, ben, private_room):
        with freeze_time("2026-01-01 12:00:00"):
            first = MessageService.append(private_room.id, ana, "first").data
        # Clock stepped back on the next writer
        with freeze_time("2026-01-01 11:59:00"):
            second = MessageService.append(private_room.id, ben, "second").data

        assert second.created_at == first.created_at
        page = MessageService.list_page(private_room.id, ana).data
        assert [m.id for m in page] == [first.id, second.id]

    def test_publishes_after_commit(
        self, ana, private_room, fanout, django_capture_on_commit_callbacks
    ):
        pushed = []
        fanout.subscribe("listener-1", private_room.id, listener=pushed.append)

        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            result = MessageService.append(private_room.id, ana, "hi")
            assert pushed == []

        assert len(callbacks) == 1
        assert [p["id"] for p in pushed] == [result.data.id]
        assert pushed[0]["content"] == "hi"

    def test_failed_append_publishes_nothing(
        self, outsider, private_room, fanout, django_capture_on_commit_callbacks
    ):
        with django_capture_on_commit_callbacks() as callbacks:
            MessageService.append(private_room.id, outsider, "hi")

        assert callbacks == []


# =============================================================================
# MessageService.list_page
# =============================================================================


class TestListPage:
    def _fill(self, room, sender, count):
        start = timezone.now() - timedelta(hours=1)
        return [
            MessageFactory(
                room=room,
                sender=sender,
                content=f"m{i}",
                created_at=start + timedelta(seconds=i),
            )
            for i in range(count)
        ]

    def test_first_page_is_newest_in_ascending_order(self, ana, private_room):
        messages = self._fill(private_room, ana, 51)

        result = MessageService.list_page(private_room.id, ana)

        assert result.success is True
        assert [m.id for m in result.data] == [m.id for m in messages[1:]]

    def test_second_page_holds_the_rest(self, ana, private_room):
        messages = self._fill(private_room, ana, 51)

        result = MessageService.list_page(private_room.id, ana, page=2)

        assert [m.id for m in result.data] == [messages[0].id]

    def test_page_past_the_end_is_empty(self, ana, private_room):
        self._fill(private_room, ana, 3)

        result = MessageService.list_page(private_room.id, ana, page=5)

        assert result.success is True
        assert result.data == []

    def test_page_size_is_capped(self, ana, private_room):
        self._fill(private_room, ana, 120)

        result = MessageService.list_page(private_room.id, ana, page_size=500)

        assert len(result.data) == 100

    def test_invalid_page(self, ana, private_room):
        zero_page = MessageService.list_page(private_room.id, ana, page=0)
        zero_size = MessageService.list_page(private_room.id, ana, page_size=0)

        assert zero_page.error_code == "INVALID_PAGE"
        assert zero_size.error_code == "INVALID_PAGE"

    def test_non_participant(self, outsider, private_room):
        result = MessageService.list_page(private_room.id, outsider)

        assert result.error_code == "NOT_PARTICIPANT"

    def test_history_stays_readable_after_deactivation(self, ana, private_room):
        self._fill(private_room, ana, 2)
        RoomService.deactivate(private_room)

        result = MessageService.list_page(private_room.id, ana)

        assert len(result.data) == 2


# =============================================================================
# MessageService.mark_read
# =============================================================================


class TestMarkRead:
    def test_recipient_marks_read(self, ana, ben, private_room):
        message = MessageFactory(room=private_room, sender=ana)

        result = MessageService.mark_read(message.id, ben)

        assert result.success is True
        message.refresh_from_db()
        assert message.is_read is True

    def test_is_idempotent(self, ana, ben, private_room):
        message = MessageFactory(room=private_room, sender=ana, is_read=True)

        result = MessageService.mark_read(message.id, ben)

        assert result.success is True
        message.refresh_from_db()
        assert message.is_read is True

    def test_sender_cannot_mark_own_message(self, ana, private_room):
        message = MessageFactory(room=private_room, sender=ana)

        result = MessageService.mark_read(message.id, ana)

        assert result.error_code == "MESSAGE_NOT_FOUND"
        message.refresh_from_db()
        assert message.is_read is False

    def test_outsider_gets_not_found(self, ana, outsider, private_room):
        message = MessageFactory(room=private_room, sender=ana)

        result = MessageService.mark_read(message.id, outsider)

        assert result.error_code == "MESSAGE_NOT_FOUND"

    def test_any_other_group_member_is_a_recipient(self, ana, ben, outsider):
        room = GroupRoomFactory()
        for user in (ana, ben, outsider):
            ParticipantFactory(room=room, user=user)
        message = MessageFactory(room=room, sender=ana)

        assert MessageService.mark_read(message.id, outsider).success is True
