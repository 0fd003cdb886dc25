"""
Chat app for real-time messaging.

This app handles:
- Room identity (one active private room per user pair)
- Message storage, history pages and read state
- The per-user room directory
- Live delivery fanout over WebSockets
- Client-side reconciliation state (chat.client)

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for the WebSocket handler and fanout.py for delivery.

Usage:
    from chat.services import RoomService, MessageService

    room = RoomService.resolve_private_room(user, other_user.id).data
    message = MessageService.append(room.id, user, "Hello!").data
"""
