"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on rooms and messages.

Services:
    RoomService: Room identity resolution, group creation, deactivation,
        and the per-user room directory
    MessageService: Message append, history pages, and read state

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Unexpected failures (database I/O) raise and are mapped by the
      API layer to a retryable TRANSIENT error
    - Live delivery happens after commit and never affects the result

Usage:
    from chat.services import RoomService, MessageService

    result = RoomService.resolve_private_room(user, other_user_id)
    if result.success:
        room = result.data

    result = MessageService.append(room.id, user, "Hello!")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Prefetch
from django.utils import timezone

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult

from chat.constants import MESSAGE_CONFIG, ROOM_CONFIG
from chat.fanout import get_fanout
from chat.models import Message, Participant, PrivateRoomPair, Room, RoomType

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)


class RoomService(BaseService):
    """
    Service for room lifecycle and lookup.

    Methods:
        resolve_private_room: Get or create the private room for a user pair
        create_group: Create a group room with a fixed member list
        deactivate: Soft delete a room and release its pair key
        list_rooms_for: Active rooms of a user, most recently active first
        get_room_for_participant: Membership-checked room lookup
    """

    @classmethod
    def resolve_private_room(
        cls,
        requester: User,
        other_user_id: int | None,
    ) -> ServiceResult[Room]:
        """
        Return the single active private room between two users.

        Resolving (A, B) and (B, A) yields the same room. An existing room
        is returned untouched; otherwise it is created with both
        participants in one transaction.

        Concurrency:
            PrivateRoomPair's unique constraint decides races. The creation
            runs in a savepoint; a losing request gets IntegrityError, rolls
            back its half-built room and returns the winner's room.

        Returns:
            ServiceResult with Room; result.created tells whether this call
            created it

        Error codes:
            MISSING_PARTICIPANT: other_user_id not given
            SAME_USER: Cannot open a private room with yourself
            USER_NOT_FOUND: No active user with that id
        """
        if other_user_id is None or other_user_id == "":
            return ServiceResult.failure(
                "Participant id is required",
                error_code="MISSING_PARTICIPANT",
            )

        if other_user_id == requester.id:
            return ServiceResult.failure(
                "Cannot create a room with yourself",
                error_code="SAME_USER",
            )

        User = get_user_model()
        if not User.objects.filter(id=other_user_id, is_active=True).exists():
            return ServiceResult.failure(
                "Participant not found",
                error_code="USER_NOT_FOUND",
            )

        user_lower_id, user_higher_id = PrivateRoomPair.normalize(
            requester.id, other_user_id
        )

        room = cls._find_private_room(user_lower_id, user_higher_id)
        if room is not None:
            cls.get_logger().debug(
                f"Found existing private room {room.id} "
                f"between users {user_lower_id} and {user_higher_id}"
            )
            return ServiceResult.success(room)

        try:
            with cls.atomic():
                room = Room.objects.create(room_type=RoomType.PRIVATE, name="")
                PrivateRoomPair.objects.create(
                    room=room,
                    user_lower_id=user_lower_id,
                    user_higher_id=user_higher_id,
                )
                now = timezone.now()
                Participant.objects.bulk_create(
                    [
                        Participant(room=room, user_id=user_lower_id, joined_at=now),
                        Participant(room=room, user_id=user_higher_id, joined_at=now),
                    ]
                )
        except IntegrityError as exc:
            room = cls._find_private_room(user_lower_id, user_higher_id)
            if room is None:
                # Not a pair race; some other constraint failed
                raise ConflictError(
                    "Private room could not be created",
                    error_code="ROOM_CONFLICT",
                ) from exc
            cls.get_logger().info(
                f"Lost private room race for users {user_lower_id} and "
                f"{user_higher_id}, using room {room.id}"
            )
            return ServiceResult.success(room)

        cls.get_logger().info(
            f"Created private room {room.id} "
            f"between users {user_lower_id} and {user_higher_id}"
        )
        return ServiceResult.success(room, created=True)

    @staticmethod
    def _find_private_room(user_lower_id: int, user_higher_id: int) -> Room | None:
        pair = (
            PrivateRoomPair.objects.select_related("room")
            .filter(
                user_lower_id=user_lower_id,
                user_higher_id=user_higher_id,
                room__is_deleted=False,
            )
            .first()
        )
        return pair.room if pair else None

    @classmethod
    def create_group(
        cls,
        creator: User,
        name: str,
        member_ids: list[int],
    ) -> ServiceResult[Room]:
        """
        Create a group room.

        The creator is always a participant and is listed first. Membership
        is fixed after creation.

        Error codes:
            INVALID_GROUP: Missing name or wrong number of participants
            USER_NOT_FOUND: A member id does not name an active user
        """
        name = name.strip() if name else ""
        if not name:
            return ServiceResult.failure(
                "Group name is required",
                error_code="INVALID_GROUP",
            )
        if len(name) > ROOM_CONFIG.MAX_NAME_LENGTH:
            return ServiceResult.failure(
                f"Group name cannot exceed {ROOM_CONFIG.MAX_NAME_LENGTH} characters",
                error_code="INVALID_GROUP",
            )

        # Creator first, then members in request order, without duplicates
        ordered_ids = list(dict.fromkeys([creator.id, *member_ids]))
        if not (
            ROOM_CONFIG.MIN_GROUP_PARTICIPANTS
            <= len(ordered_ids)
            <= ROOM_CONFIG.MAX_GROUP_PARTICIPANTS
        ):
            return ServiceResult.failure(
                f"A group needs between {ROOM_CONFIG.MIN_GROUP_PARTICIPANTS} and "
                f"{ROOM_CONFIG.MAX_GROUP_PARTICIPANTS} participants",
                error_code="INVALID_GROUP",
            )

        User = get_user_model()
        found = set(
            User.objects.filter(id__in=ordered_ids, is_active=True).values_list(
                "id", flat=True
            )
        )
        if len(found) != len(ordered_ids):
            return ServiceResult.failure(
                "Participant not found",
                error_code="USER_NOT_FOUND",
            )

        with cls.atomic():
            room = Room.objects.create(room_type=RoomType.GROUP, name=name)
            now = timezone.now()
            Participant.objects.bulk_create(
                [Participant(room=room, user_id=uid, joined_at=now) for uid in ordered_ids]
            )

        cls.get_logger().info(
            f"Created group room {room.id} with {len(ordered_ids)} participants"
        )
        return ServiceResult.success(room, created=True)

    @classmethod
    def deactivate(cls, room: Room) -> ServiceResult[Room]:
        """
        Logically delete a room.

        History is preserved. For private rooms the pair key is released in
        the same transaction, so the two users can later resolve a new room.
        Deactivating an inactive room is a no-op.
        """
        if room.is_deleted:
            return ServiceResult.success(room)

        with cls.atomic():
            PrivateRoomPair.objects.filter(room=room).delete()
            room.soft_delete()

        cls.get_logger().info(f"Deactivated room {room.id}")
        return ServiceResult.success(room)

    @classmethod
    def list_rooms_for(cls, user: User) -> list[Room]:
        """
        Active rooms the user participates in, most recently active first.

        Each room carries is_unread for this user: the last message exists,
        was sent by someone else and is not read yet.
        """
        rooms = list(
            Room.objects.filter(is_deleted=False, participants__user=user)
            .select_related("last_message", "last_message__sender")
            .prefetch_related(
                Prefetch(
                    "participants",
                    queryset=Participant.objects.select_related("user"),
                )
            )
            .order_by("-updated_at", "-id")
        )
        for room in rooms:
            last = room.last_message
            room.is_unread = (
                last is not None and last.sender_id != user.id and not last.is_read
            )
        return rooms

    @staticmethod
    def get_room_for_participant(
        room_id: int,
        user: User,
        include_inactive: bool = False,
    ) -> Room | None:
        """
        Return the room if the user participates in it, else None.

        Unknown rooms and foreign rooms look the same to the caller.
        """
        queryset = Room.objects.filter(id=room_id, participants__user=user)
        if not include_inactive:
            queryset = queryset.filter(is_deleted=False)
        return queryset.first()


class MessageService(BaseService):
    """
    Service for message operations.

    Methods:
        append: Durably add a message and hand it to live delivery
        list_page: One page of room history in ascending order
        mark_read: Set the read flag as a recipient
    """

    @classmethod
    def append(
        cls,
        room_id: int,
        sender: User,
        content: str,
    ) -> ServiceResult[Message]:
        """
        Append a message to a room.

        Within one transaction the room row is locked, the message gets a
        timestamp no earlier than the room's previous message, and the room's
        last_message and updated_at are written together. Fanout is scheduled
        for after commit, so nobody is pushed a message that was rolled back.

        Error codes:
            NOT_PARTICIPANT: Room unknown, inactive, or sender not a member
            EMPTY_CONTENT: Content is empty after trimming
            CONTENT_TOO_LONG: Content exceeds MESSAGE_CONFIG.MAX_CONTENT_LENGTH
        """
        room = RoomService.get_room_for_participant(room_id, sender)
        if room is None:
            return ServiceResult.failure(
                "Access denied",
                error_code="NOT_PARTICIPANT",
            )

        # Whitespace is kept as sent; only the emptiness check ignores it
        content = content or ""
        if len(content.strip()) < MESSAGE_CONFIG.MIN_CONTENT_LENGTH:
            return ServiceResult.failure(
                "Message content cannot be empty",
                error_code="EMPTY_CONTENT",
            )
        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content cannot exceed "
                f"{MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code="CONTENT_TOO_LONG",
            )

        with cls.atomic():
            locked = Room.objects.select_for_update().get(id=room.id)

            created_at = timezone.now()
            previous = (
                Message.objects.filter(id=locked.last_message_id)
                .values_list("created_at", flat=True)
                .first()
            )
            if previous is not None and previous > created_at:
                created_at = previous

            message = Message.objects.create(
                room=locked,
                sender=sender,
                content=content,
                created_at=created_at,
            )

            locked.last_message = message
            locked.save(update_fields=["last_message", "updated_at"])

            transaction.on_commit(lambda: get_fanout().publish_message(message))

        cls.get_logger().debug(
            f"User {sender.id} appended message {message.id} to room {locked.id}"
        )
        return ServiceResult.success(message, created=True)

    @classmethod
    def list_page(
        cls,
        room_id: int,
        reader: User,
        page: int = 1,
        page_size: int = MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
    ) -> ServiceResult[list[Message]]:
        """
        Return one page of a room's history in chronological order.

        Page 1 holds the newest page_size messages. Rows are fetched
        newest-first so the slice is bounded, then reversed. Deactivated
        rooms keep their history readable by participants.

        Error codes:
            NOT_PARTICIPANT: Room unknown or reader not a member
            INVALID_PAGE: page or page_size below 1
        """
        room = RoomService.get_room_for_participant(
            room_id, reader, include_inactive=True
        )
        if room is None:
            return ServiceResult.failure(
                "Access denied",
                error_code="NOT_PARTICIPANT",
            )

        if page < 1 or page_size < 1:
            return ServiceResult.failure(
                "page and limit must be positive integers",
                error_code="INVALID_PAGE",
            )
        page_size = min(page_size, MESSAGE_CONFIG.MAX_PAGE_SIZE)

        offset = (page - 1) * page_size
        messages = list(
            Message.objects.filter(room_id=room.id)
            .select_related("sender")
            .order_by("-created_at", "-id")[offset : offset + page_size]
        )
        messages.reverse()
        return ServiceResult.success(messages)

    @classmethod
    def mark_read(cls, message_id: int, reader: User) -> ServiceResult[None]:
        """
        Mark a message read on behalf of a recipient.

        Idempotent: a message that is already read stays read and the call
        still succeeds.

        Error codes:
            MESSAGE_NOT_FOUND: No such message in the reader's rooms, or the
                reader is its sender
        """
        message = (
            Message.objects.filter(id=message_id, room__participants__user=reader)
            .exclude(sender=reader)
            .only("id")
            .first()
        )
        if message is None:
            return ServiceResult.failure(
                "Message not found",
                error_code="MESSAGE_NOT_FOUND",
            )

        updated = Message.objects.filter(id=message.id, is_read=False).update(
            is_read=True, updated_at=timezone.now()
        )
        if updated:
            cls.get_logger().debug(f"User {reader.id} read message {message.id}")
        return ServiceResult.success(None)
