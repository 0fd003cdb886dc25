"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Room management (with participants inline)
- Private pair keys
- Message inspection
"""

from django.contrib import admin

from chat.models import Message, Participant, PrivateRoomPair, Room


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in room admin."""

    model = Participant
    extra = 0
    readonly_fields = ["joined_at"]
    raw_id_fields = ["user"]


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    """Admin interface for Room model."""

    list_display = [
        "id",
        "room_type",
        "name",
        "is_deleted",
        "created_at",
        "updated_at",
    ]
    list_filter = ["room_type", "is_deleted", "created_at"]
    search_fields = ["name", "id"]
    readonly_fields = ["created_at", "updated_at", "deleted_at", "last_message"]
    inlines = [ParticipantInline]
    ordering = ["-updated_at"]


@admin.register(PrivateRoomPair)
class PrivateRoomPairAdmin(admin.ModelAdmin):
    list_display = ["room", "user_lower", "user_higher"]
    raw_id_fields = ["room", "user_lower", "user_higher"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model. Messages are read-only here."""

    list_display = ["id", "room", "sender", "is_read", "created_at"]
    list_filter = ["is_read", "created_at"]
    search_fields = ["sender__email", "room__name"]
    readonly_fields = ["room", "sender", "content", "created_at", "updated_at"]
    raw_id_fields = ["room", "sender"]
    ordering = ["-created_at"]
