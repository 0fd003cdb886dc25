"""
Chat system models.

This module defines the data models for the chat system supporting:
- Private (1:1) rooms between exactly two users
- Group rooms (created explicitly, fixed membership)

Models:
    Room: Container for messages between participants
    PrivateRoomPair: Storage-level uniqueness key for private rooms
    Participant: User membership in a room
    Message: Individual message within a room

Design Decisions:
    - A private room is unique per unordered user pair while active
    - Rooms are never physically deleted; deactivation is a soft delete
    - Messages are immutable except for the read flag
    - Message timestamps are assigned by the service layer so they never
      decrease within a room
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from core.model_mixins import SoftDeleteMixin
from core.models import BaseModel


class RoomType(models.TextChoices):
    """
    Kind of room.

    PRIVATE: Exactly two participants, unique per pair, no name
    GROUP: Two or more participants, name required
    """

    PRIVATE = "private", "Private"
    GROUP = "group", "Group"


class Room(SoftDeleteMixin, BaseModel):
    """
    A room binding a fixed set of participants.

    Soft Delete Behavior:
        - is_deleted=False: Room is active and listed in the directory
        - is_deleted=True: Room is deactivated; its history is preserved

    Fields:
        room_type: Kind of room (private or group)
        name: Group name (empty string for private rooms)
        last_message: Most recent message (written by MessageService.append)

    Relationships:
        participants: Participant rows for this room
        messages: Message rows for this room
        private_pair: PrivateRoomPair if type is PRIVATE and the room is active
    """

    room_type = models.CharField(
        max_length=10,
        choices=RoomType.choices,
        default=RoomType.PRIVATE,
        db_index=True,
        help_text="Kind of room (private or group)",
    )

    name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name for group rooms (empty for private rooms)",
    )

    last_message = models.ForeignKey(
        "chat.Message",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Most recent message in this room",
    )

    class Meta:
        db_table = "chat_room"
        ordering = ["-updated_at", "-id"]
        indexes = [
            # Directory ordering (active rooms only)
            models.Index(
                fields=["-updated_at"],
                name="chat_room_updated_idx",
                condition=Q(is_deleted=False),
            ),
        ]

    def __str__(self) -> str:
        if self.room_type == RoomType.PRIVATE:
            return f"Private({self.pk})"
        if self.name:
            return f"Group: {self.name}"
        return f"Group({self.pk})"

    @property
    def is_active(self) -> bool:
        return not self.is_deleted


class PrivateRoomPair(models.Model):
    """
    Enforces uniqueness of active private rooms between two users.

    Stores user pairs in canonical order (lower user id first). The unique
    constraint is what serializes concurrent creation: whichever insert
    commits first wins, the other gets an IntegrityError.

    Deactivating a private room deletes its pair row, so the same two users
    can later resolve a fresh room.

    Fields:
        room: The private room (OneToOne, serves as PK)
        user_lower: User with lower id
        user_higher: User with higher id
    """

    room = models.OneToOneField(
        Room,
        on_delete=models.CASCADE,
        primary_key=True,
        related_name="private_pair",
        help_text="The private room this pair represents",
    )

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with lower id in this pair",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="User with higher id in this pair",
    )

    class Meta:
        db_table = "chat_private_room_pair"
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_private_room_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="private_pair_lower_less_than_higher",
            ),
        ]

    def __str__(self) -> str:
        return f"PrivatePair({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def normalize(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Return the pair key in canonical (lower, higher) order."""
        if user_a_id < user_b_id:
            return user_a_id, user_b_id
        return user_b_id, user_a_id


class Participant(BaseModel):
    """
    A user's membership in a room.

    Membership is fixed once the room is created. For private rooms the
    lower user id is written first so participant order is stable.

    Fields:
        room: Room this membership belongs to
        user: Member user
        joined_at: When the user was added
    """

    room = models.ForeignKey(
        Room,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Room this membership belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="room_participations",
        help_text="Member user",
    )

    joined_at = models.DateTimeField(
        default=timezone.now,
        help_text="When the user was added to the room",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["joined_at", "id"]
        indexes = [
            # User's rooms
            models.Index(
                fields=["user", "room"],
                name="chat_part_user_room_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["room", "user"],
                name="unique_room_participant",
            ),
        ]

    def __str__(self) -> str:
        return f"Participant: {self.user_id} in {self.room_id}"


class Message(BaseModel):
    """
    A message within a room.

    Ordering:
        Messages in a room are totally ordered by (created_at, id).
        created_at is assigned by MessageService.append, never by the client.

    Fields:
        room: Room this message belongs to
        sender: User who sent the message
        content: Message text (non-empty after trimming)
        is_read: Whether a recipient has marked it read
    """

    # Assigned by the service layer, not auto_now_add
    created_at = models.DateTimeField(
        default=timezone.now,
        db_index=True,
        help_text="When the message was durably appended",
    )

    room = models.ForeignKey(
        Room,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Room this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages",
        help_text="User who sent this message",
    )

    content = models.TextField(
        help_text="Message text",
    )

    is_read = models.BooleanField(
        default=False,
        help_text="Whether a recipient has read this message",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["created_at", "id"]
        indexes = [
            # History pages per room
            models.Index(
                fields=["room", "created_at", "id"],
                name="chat_msg_room_order_idx",
            ),
        ]

    def __str__(self) -> str:
        content_preview = (
            self.content[:50] + "..." if len(self.content) > 50 else self.content
        )
        return f"User {self.sender_id}: {content_preview}"
