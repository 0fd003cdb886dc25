"""
Chat application configuration.

This app provides:
- Private rooms unique per user pair, and group rooms
- Ordered, paginated message history with a read flag
- Live delivery over WebSockets through Django Channels
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
