# apps/chat/views.py
"""
Request/response side of the support chat.

These endpoints open threads, read history, reset unread counters, delete
threads and accept image uploads. None of them sends a text message; that
only happens over the realtime channel.
"""
from asgiref.sync import async_to_sync
from rest_framework import permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.users.authentication import identity_for_user
from apps.users.permissions import IsCustomer, IsSupportAdmin
from .apps import get_hub
from .attachments import AttachmentHandler
from .conf import chat_setting
from .exceptions import ChatError, ValidationFailure
from .serializers import ImageUploadSerializer, MessageSerializer, ThreadSerializer, ThreadSummarySerializer


def int_param(request, name, default=None, minimum=1, maximum=None):
    raw = request.query_params.get(name)
    if raw in (None, ''):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationFailure(f"'{name}' must be an integer")
    if value < minimum:
        raise ValidationFailure(f"'{name}' must be at least {minimum}")
    if maximum is not None:
        value = min(value, maximum)
    return value


def request_ip(request):
    forwarded = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', '')


class ChatAPIView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    @property
    def hub(self):
        return get_hub()

    @property
    def identity(self):
        return identity_for_user(self.request.user)

    def handle_exception(self, exc):
        if isinstance(exc, ChatError):
            return Response(exc.as_payload(), status=exc.status_code)
        return super().handle_exception(exc)


# ========================
# CUSTOMER: OPEN MY THREAD
# ========================
class OpenThreadView(ChatAPIView):
    permission_classes = [permissions.IsAuthenticated, IsCustomer]

    def post(self, request):
        thread = async_to_sync(self.hub.registry.open_or_create)(request.user.id, request_ip(request))
        return Response({
            "success": True,
            "thread": ThreadSerializer(thread).data,
        })


# ========================
# THREAD MESSAGES (customer: own thread, admin: any)
# ========================
class ThreadMessagesView(ChatAPIView):

    def get(self, request, pk):
        registry = self.hub.registry
        registry.get_authorized_thread(self.identity, pk)

        limit = int_param(request, 'limit', maximum=chat_setting('MESSAGE_PAGE_SIZE') * 4)
        page = int_param(request, 'page', default=1)
        if limit is None and 'page' in request.query_params:
            limit = chat_setting('MESSAGE_PAGE_SIZE')

        messages = registry.list_messages(pk, page=page, limit=limit)
        return Response({
            "success": True,
            "thread_id": pk,
            "messages": MessageSerializer(messages, many=True).data,
        })


# ========================
# MARK AS READ (side follows the caller's role)
# ========================
class MarkReadView(ChatAPIView):

    def post(self, request, pk):
        thread = async_to_sync(self.hub.mark_read)(self.identity, pk)
        return Response({
            "success": True,
            "thread": ThreadSerializer(thread).data,
        })


# ========================
# IMAGE UPLOAD
# ========================
class ImageUploadView(ChatAPIView):

    def post(self, request, pk):
        serializer = ImageUploadSerializer(data=request.data)
        if not serializer.is_valid():
            raise ValidationFailure("Image file required")

        handler = AttachmentHandler(self.hub)
        message = async_to_sync(handler.handle)(
            self.identity,
            pk,
            serializer.validated_data['image'],
            serializer.validated_data.get('client_message_id') or None,
        )
        return Response({
            "success": True,
            "message": MessageSerializer(message).data,
            "image_url": message.image_url,
        }, status=status.HTTP_201_CREATED)


# ========================
# ADMIN: THREAD LIST
# ========================
class AdminThreadListView(ChatAPIView):
    permission_classes = [permissions.IsAuthenticated, IsSupportAdmin]

    def get(self, request):
        page = int_param(request, 'page', default=1)
        limit = int_param(request, 'limit', default=chat_setting('ADMIN_PAGE_SIZE'), maximum=100)
        query = request.query_params.get('q', '').strip()

        hub = self.hub
        result = hub.registry.list_for_admin(page=page, page_size=limit, query=query or None)
        serializer = ThreadSummarySerializer(result.threads, many=True, context={"presence": hub.presence})

        return Response({
            "success": True,
            "threads": serializer.data,
            "pagination": result.pagination,
            "total_unread": hub.delivery.total_unread_for_admin(),
        })


class AdminThreadDetailView(ChatAPIView):
    permission_classes = [permissions.IsAuthenticated, IsSupportAdmin]

    def delete(self, request, pk):
        async_to_sync(self.hub.delete_thread)(self.identity, pk)
        return Response({"success": True})


class AdminUnreadView(ChatAPIView):
    permission_classes = [permissions.IsAuthenticated, IsSupportAdmin]

    def get(self, request):
        return Response({
            "success": True,
            "total_unread": self.hub.delivery.total_unread_for_admin(),
        })
