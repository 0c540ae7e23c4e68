# apps/chat/delivery.py
import logging
from typing import NamedTuple

from django.db import IntegrityError, transaction

from . import store
from .conf import chat_setting
from .exceptions import StorageFailure
from .models import ChatMessage, ChatThread

logger = logging.getLogger(__name__)


class RecordedMessage(NamedTuple):
    message: ChatMessage
    thread: ChatThread
    created: bool


def opposite_side(sender_type):
    if sender_type == ChatMessage.CUSTOMER:
        return ChatMessage.ADMIN
    return ChatMessage.CUSTOMER


class DeliveryCoordinator:
    """Persists messages together with their preview and unread bookkeeping."""

    def preview_text(self, text, image_url):
        if text:
            return text
        return chat_setting('IMAGE_PREVIEW_TEXT') if image_url else ''

    def record(self, thread_id, sender_type, sender_id=None, text='', image_url='', client_message_id=None):
        """
        Insert a message, refresh the thread preview and bump the unread
        counter of the receiving side, all in one transaction.

        A message whose client_message_id is already stored on the thread is
        returned as-is with ``created=False`` and nothing is written.
        """
        existing = store.find_message(thread_id, client_message_id)
        if existing is not None:
            return RecordedMessage(existing, store.get_thread(thread_id), False)

        try:
            with transaction.atomic():
                message = store.insert_message(
                    thread_id,
                    sender_type,
                    text=text,
                    image_url=image_url,
                    sender_id=sender_id,
                    client_message_id=client_message_id,
                )
                thread = store.upsert_thread_summary(
                    thread_id,
                    self.preview_text(text, image_url),
                    message.created_at,
                    unread_delta={opposite_side(sender_type): 1},
                )
        except IntegrityError as e:
            existing = store.find_message(thread_id, client_message_id)
            if existing is None:
                raise StorageFailure() from e
            return RecordedMessage(existing, store.get_thread(thread_id), False)

        logger.info("Stored message %s in thread %s from %s", message.pk, thread_id, sender_type)
        return RecordedMessage(message, thread, True)

    def mark_read(self, thread_id, side):
        """Last-write-wins reset of one side's unread counter."""
        return store.reset_unread(thread_id, side)

    def unread_count(self, thread, side):
        return getattr(thread, store.unread_field(side))

    def total_unread_for_admin(self):
        return store.total_unread(ChatMessage.ADMIN)
