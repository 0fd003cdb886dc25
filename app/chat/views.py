"""
REST API views for the chat system.

URL Structure:
    /api/v1/chat/room/                   POST  resolve private room
    /api/v1/chat/rooms/                  GET   room directory
    /api/v1/chat/messages/               POST  send message
    /api/v1/chat/messages/{room_id}/     GET   history page (?page=&limit=)
    /api/v1/chat/messages/{id}/read/     PUT   mark message read

Design Decisions:
    - Views handle HTTP concerns only; all rules live in chat.services
    - Service error codes map to HTTP status through ERROR_STATUS
    - Failures use {"error": str, "error_code": str}
    - Database I/O failures propagate to core.exceptions.api_exception_handler
      and surface as a retryable 503
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from chat.serializers import (
    MessageCreateSerializer,
    MessagePageSerializer,
    MessageSerializer,
    ResolveRoomSerializer,
    RoomSerializer,
)
from chat.services import MessageService, RoomService

ERROR_STATUS = {
    # InvalidArgument
    "MISSING_PARTICIPANT": status.HTTP_400_BAD_REQUEST,
    "SAME_USER": status.HTTP_400_BAD_REQUEST,
    "EMPTY_CONTENT": status.HTTP_400_BAD_REQUEST,
    "CONTENT_TOO_LONG": status.HTTP_400_BAD_REQUEST,
    "INVALID_PAGE": status.HTTP_400_BAD_REQUEST,
    "INVALID_GROUP": status.HTTP_400_BAD_REQUEST,
    # NotFound
    "USER_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "MESSAGE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    # PermissionDenied
    "NOT_PARTICIPANT": status.HTTP_403_FORBIDDEN,
}


def failure_response(result: ServiceResult) -> Response:
    """Render a failed ServiceResult with the status its error code maps to."""
    return Response(
        {"error": result.error, "error_code": result.error_code},
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST),
    )


class ResolveRoomView(APIView):
    """
    Get or create the private room with another user.

    201 when this request created the room, 200 when it already existed.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="resolve_private_room",
        summary="Open private room",
        tags=["Chat - Rooms"],
        request=ResolveRoomSerializer,
        responses={
            200: RoomSerializer,
            201: RoomSerializer,
            400: OpenApiResponse(description="Missing participant or self"),
            404: OpenApiResponse(description="Unknown user"),
        },
    )
    def post(self, request):
        serializer = ResolveRoomSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = RoomService.resolve_private_room(
            requester=request.user,
            other_user_id=serializer.validated_data.get("other_user_id"),
        )
        if not result.success:
            return failure_response(result)

        output = RoomSerializer(result.data, context={"request": request})
        return Response(
            output.data,
            status=status.HTTP_201_CREATED if result.created else status.HTTP_200_OK,
        )


class RoomListView(APIView):
    """Active rooms of the current user, most recently active first."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_rooms",
        summary="List rooms",
        tags=["Chat - Rooms"],
        responses={200: RoomSerializer(many=True)},
    )
    def get(self, request):
        rooms = RoomService.list_rooms_for(request.user)
        serializer = RoomSerializer(rooms, many=True, context={"request": request})
        return Response(serializer.data)


class MessageCreateView(APIView):
    """Send a message to a room."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="send_message",
        summary="Send message",
        tags=["Chat - Messages"],
        request=MessageCreateSerializer,
        responses={
            201: MessageSerializer,
            400: OpenApiResponse(description="Missing fields or invalid content"),
            403: OpenApiResponse(description="Not a participant"),
        },
    )
    def post(self, request):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = MessageService.append(
            room_id=serializer.validated_data["room_id"],
            sender=request.user,
            content=serializer.validated_data["content"],
        )
        if not result.success:
            return failure_response(result)

        return Response(
            MessageSerializer(result.data).data,
            status=status.HTTP_201_CREATED,
        )


class MessageListView(APIView):
    """
    One page of room history, oldest first within the page.

    Page 1 is the most recent page.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_messages",
        summary="List messages",
        tags=["Chat - Messages"],
        parameters=[
            OpenApiParameter("page", OpenApiTypes.INT, description="Page (1 = newest)"),
            OpenApiParameter("limit", OpenApiTypes.INT, description="Page size"),
        ],
        responses={
            200: MessageSerializer(many=True),
            400: OpenApiResponse(description="Invalid page or limit"),
            403: OpenApiResponse(description="Not a participant"),
        },
    )
    def get(self, request, room_id: int):
        query = MessagePageSerializer(data=request.query_params)
        if not query.is_valid():
            return Response(
                {
                    "error": "page and limit must be positive integers",
                    "error_code": "INVALID_PAGE",
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = MessageService.list_page(
            room_id=room_id,
            reader=request.user,
            page=query.validated_data["page"],
            page_size=query.validated_data["limit"],
        )
        if not result.success:
            return failure_response(result)

        return Response(MessageSerializer(result.data, many=True).data)


class MessageReadView(APIView):
    """Mark a message read as its recipient."""

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="mark_message_read",
        summary="Mark message read",
        tags=["Chat - Messages"],
        request=None,
        responses={
            200: OpenApiResponse(description="Message marked as read"),
            404: OpenApiResponse(description="Not found or not the recipient"),
        },
    )
    def put(self, request, message_id: int):
        result = MessageService.mark_read(message_id=message_id, reader=request.user)
        if not result.success:
            return failure_response(result)
        return Response({"message": "Message marked as read"})
