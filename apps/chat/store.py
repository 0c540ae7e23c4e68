# apps/chat/store.py
"""
Durable CRUD over threads and messages.

Plain synchronous ORM helpers; async callers wrap them with
``database_sync_to_async``. Database errors surface as StorageFailure, except
IntegrityError which callers use to detect lost creation races.
"""
import functools
import logging

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Case, F, OuterRef, Subquery, Sum, Value, When

from .exceptions import NotFound, StorageFailure
from .models import ChatMessage, ChatThread

logger = logging.getLogger(__name__)

UNREAD_FIELDS = {
    ChatMessage.ADMIN: 'unread_for_admin',
    ChatMessage.CUSTOMER: 'unread_for_customer',
}


def storage_guard(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except IntegrityError:
            raise
        except DatabaseError as e:
            logger.exception("Storage error in %s", func.__name__)
            raise StorageFailure() from e
    return wrapper


def unread_field(side):
    try:
        return UNREAD_FIELDS[side]
    except KeyError:
        raise ValueError(f"Unknown side: {side!r}")


# --- Threads ---
@storage_guard
def get_thread(thread_id):
    try:
        return ChatThread.objects.select_related('customer').get(pk=thread_id)
    except (ChatThread.DoesNotExist, ValueError, TypeError):
        raise NotFound()


@storage_guard
def find_open_thread(customer_id):
    return ChatThread.objects.filter(customer_id=customer_id, status=ChatThread.OPEN).first()


@storage_guard
def latest_thread(customer_id):
    return ChatThread.objects.filter(customer_id=customer_id).order_by('-last_message_at', '-id').first()


@storage_guard
def create_thread(customer_id, customer_ip=''):
    return ChatThread.objects.create(customer_id=customer_id, customer_ip=customer_ip or '')


@storage_guard
def update_thread(thread, **fields):
    for name, value in fields.items():
        setattr(thread, name, value)
    thread.save(update_fields=[*fields, 'updated_at'])
    return thread


@storage_guard
def list_threads(query=None, customer_id=None, status=None, consolidated=False):
    """
    Threads ordered by last activity, newest first.

    With ``consolidated`` only each customer's canonical thread is kept: the
    open one if there is one, otherwise the most recently active.
    """
    threads = ChatThread.objects.select_related('customer')
    if consolidated:
        canonical = (
            ChatThread.objects
            .filter(customer_id=OuterRef('customer_id'))
            .annotate(closed_rank=Case(When(status=ChatThread.OPEN, then=Value(0)), default=Value(1)))
            .order_by('closed_rank', '-last_message_at', '-id')
            .values('id')[:1]
        )
        threads = threads.filter(id=Subquery(canonical))
    if customer_id is not None:
        threads = threads.filter(customer_id=customer_id)
    if status:
        threads = threads.filter(status=status)
    if query:
        threads = threads.filter(last_message_text__icontains=query)
    return threads.order_by('-last_message_at', '-id')


@storage_guard
def upsert_thread_summary(thread_id, last_text, last_at, unread_delta=None):
    """Write the preview fields and bump unread counters in one UPDATE."""
    changes = {'last_message_text': last_text, 'last_message_at': last_at}
    for side, delta in (unread_delta or {}).items():
        field = unread_field(side)
        changes[field] = F(field) + delta

    updated = ChatThread.objects.filter(pk=thread_id).update(**changes)
    if not updated:
        raise NotFound()
    return ChatThread.objects.select_related('customer').get(pk=thread_id)


@storage_guard
def reset_unread(thread_id, side):
    updated = ChatThread.objects.filter(pk=thread_id).update(**{unread_field(side): 0})
    if not updated:
        raise NotFound()
    return ChatThread.objects.select_related('customer').get(pk=thread_id)


@storage_guard
def total_unread(side):
    """Unread count summed over the threads the admin list shows."""
    field = unread_field(side)
    threads = list_threads(consolidated=True).order_by()
    return threads.aggregate(total=Sum(field))['total'] or 0


@storage_guard
def delete_thread_cascade(thread_id):
    """Remove a thread and every message in it. Returns the removed thread."""
    with transaction.atomic():
        thread = ChatThread.objects.select_for_update().filter(pk=thread_id).first()
        if thread is None:
            raise NotFound()
        ChatMessage.objects.filter(thread_id=thread_id).delete()
        ChatThread.objects.filter(pk=thread_id).delete()
    return thread


# --- Messages ---
@storage_guard
def insert_message(thread_id, sender_type, text='', image_url='', sender_id=None, client_message_id=None):
    return ChatMessage.objects.create(
        thread_id=thread_id,
        sender_type=sender_type,
        sender_id=sender_id,
        text=text or '',
        image_url=image_url or '',
        client_message_id=client_message_id or None,
    )


@storage_guard
def find_message(thread_id, client_message_id):
    if not client_message_id:
        return None
    return ChatMessage.objects.filter(thread_id=thread_id, client_message_id=client_message_id).first()


@storage_guard
def list_messages(thread_id, page=None, limit=None):
    """
    Messages of a thread in creation order.

    With ``limit`` the newest ``limit`` messages of ``page`` (1-based) are
    fetched, then returned oldest first.
    """
    messages = ChatMessage.objects.filter(thread_id=thread_id)
    if not limit:
        return list(messages.order_by('created_at', 'id'))

    page = max(int(page or 1), 1)
    start = (page - 1) * limit
    newest = list(messages.order_by('-created_at', '-id')[start:start + limit])
    newest.reverse()
    return newest
