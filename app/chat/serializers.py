"""
Serializers for chat API.

Serializer Hierarchy:
    MessageSerializer: Stored message, also the live push payload
    RoomSerializer: Room with participants, last message and unread flag

    ResolveRoomSerializer: Input for private room resolution
    MessageCreateSerializer: Input for sending a message
    MessagePageSerializer: History query parameters

Design Decisions:
    - Read and write serializers are separate for clarity
    - Content validation (emptiness, length) lives in MessageService so the
      REST and WebSocket paths reject the same input the same way
    - Timestamps are ISO 8601 strings; the payload is JSON-safe as-is for
      the channel layer
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import ParticipantUserSerializer
from chat.constants import MESSAGE_CONFIG
from chat.models import Message, Room


# =============================================================================
# Message Serializers
# =============================================================================


class MessageSerializer(serializers.ModelSerializer):
    """
    Stored message.

    Used for history pages, append responses and live pushes, so every
    client sees the same shape whichever way a message arrives.
    """

    sender = ParticipantUserSerializer(read_only=True)

    class Meta:
        model = Message
        fields = [
            "id",
            "room_id",
            "sender_id",
            "sender",
            "content",
            "is_read",
            "created_at",
        ]
        read_only_fields = fields


class MessageCreateSerializer(serializers.Serializer):
    """
    Input for sending a message.

    Blank content is accepted here and rejected by the service with
    EMPTY_CONTENT.
    """

    room_id = serializers.IntegerField(help_text="Target room")
    content = serializers.CharField(
        allow_blank=True,
        trim_whitespace=False,
        help_text=f"Message text (max {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters)",
    )


class MessagePageSerializer(serializers.Serializer):
    """History query parameters (?page=&limit=)."""

    page = serializers.IntegerField(required=False, default=1)
    limit = serializers.IntegerField(
        required=False,
        default=MESSAGE_CONFIG.DEFAULT_PAGE_SIZE,
        help_text=f"Page size (capped at {MESSAGE_CONFIG.MAX_PAGE_SIZE})",
    )


# =============================================================================
# Room Serializers
# =============================================================================


class RoomSerializer(serializers.ModelSerializer):
    """
    Room as seen by one participant.

    Computed fields:
    - display_name: Group name, or the other participant's name
    - is_unread: Set by RoomService.list_rooms_for; False elsewhere
    """

    participants = serializers.SerializerMethodField(
        help_text="Participants in join order"
    )
    last_message = MessageSerializer(read_only=True, allow_null=True)
    display_name = serializers.SerializerMethodField(
        help_text="Display name for the room"
    )
    is_unread = serializers.SerializerMethodField(
        help_text="Last message is from someone else and not read"
    )
    is_active = serializers.BooleanField(read_only=True)

    class Meta:
        model = Room
        fields = [
            "id",
            "room_type",
            "name",
            "display_name",
            "participants",
            "last_message",
            "is_unread",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_participants(self, obj: Room) -> list[dict]:
        users = [p.user for p in obj.participants.all()]
        return ParticipantUserSerializer(users, many=True).data

    def get_display_name(self, obj: Room) -> str:
        if obj.name:
            return obj.name

        viewer = self.context.get("user")
        if viewer is None and "request" in self.context:
            viewer = self.context["request"].user
        viewer_id = viewer.id if viewer else None
        for participant in obj.participants.all():
            if participant.user_id != viewer_id:
                user = participant.user
                return user.display_name or user.email
        return ""

    def get_is_unread(self, obj: Room) -> bool:
        return getattr(obj, "is_unread", False)


class ResolveRoomSerializer(serializers.Serializer):
    """
    Input for private room resolution.

    A missing id is passed through so the service answers with
    MISSING_PARTICIPANT.
    """

    other_user_id = serializers.IntegerField(
        required=False,
        allow_null=True,
        help_text="The other participant's user id",
    )
