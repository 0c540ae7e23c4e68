# apps/chat/registry.py
import logging
from dataclasses import dataclass, field
from typing import List

from channels.db import database_sync_to_async
from django.core.paginator import EmptyPage, Paginator
from django.db import IntegrityError, transaction

from . import store
from .conf import chat_setting
from .exceptions import AuthorizationFailure
from .locks import KeyedLock
from .models import ChatThread

logger = logging.getLogger(__name__)


@dataclass
class ThreadPage:
    threads: List[ChatThread] = field(default_factory=list)
    page: int = 1
    pages: int = 0
    total: int = 0

    @property
    def pagination(self):
        return {'current': self.page, 'pages': self.pages, 'total': self.total}


class ThreadRegistry:
    """
    Maps each customer to their canonical (open) thread and serves the
    consolidated admin listing.
    """

    def __init__(self, locks=None):
        self.locks = locks or KeyedLock()

    # ========================
    # FIND OR CREATE
    # ========================
    async def open_or_create(self, customer_id, customer_ip=''):
        """
        Return the customer's canonical thread, creating it on first use.

        Concurrent calls for the same customer in this process queue on a
        per-customer lock; other processes are held off by the
        one-open-thread-per-customer constraint.
        """
        async with self.locks.hold(('customer', customer_id)):
            return await database_sync_to_async(self.open_or_create_sync)(customer_id, customer_ip)

    def open_or_create_sync(self, customer_id, customer_ip=''):
        thread = store.find_open_thread(customer_id)
        if thread is None:
            try:
                with transaction.atomic():
                    thread = self._reopen_or_create(customer_id, customer_ip)
            except IntegrityError:
                # lost the race to another process
                thread = store.find_open_thread(customer_id)
                if thread is None:
                    raise
        elif customer_ip and not thread.customer_ip:
            store.update_thread(thread, customer_ip=customer_ip)
        return thread

    def _reopen_or_create(self, customer_id, customer_ip):
        previous = store.latest_thread(customer_id)
        if previous is not None:
            changes = {'status': ChatThread.OPEN}
            if customer_ip and not previous.customer_ip:
                changes['customer_ip'] = customer_ip
            logger.info("Reopening thread %s for customer %s", previous.pk, customer_id)
            return store.update_thread(previous, **changes)

        thread = store.create_thread(customer_id, customer_ip)
        logger.info("Created thread %s for customer %s", thread.pk, customer_id)
        return thread

    # ========================
    # LOOKUP & ACCESS
    # ========================
    def get_thread(self, thread_id):
        return store.get_thread(thread_id)

    def authorize(self, identity, thread):
        """Customers may only touch their own thread; admins may touch any."""
        if identity.is_admin:
            return thread
        if thread.customer_id != identity.user_id:
            logger.warning("User %s denied access to thread %s", identity.user_id, thread.pk)
            raise AuthorizationFailure()
        return thread

    def get_authorized_thread(self, identity, thread_id):
        return self.authorize(identity, self.get_thread(thread_id))

    # ========================
    # ADMIN LISTING
    # ========================
    def list_for_admin(self, page=1, page_size=None, query=None):
        """One entry per customer, most recently active first."""
        page_size = page_size or chat_setting('ADMIN_PAGE_SIZE')
        threads = store.list_threads(query=query, consolidated=True)
        paginator = Paginator(threads, page_size)
        try:
            current = paginator.page(page)
        except EmptyPage:
            return ThreadPage(page=int(page), pages=paginator.num_pages, total=paginator.count)
        return ThreadPage(
            threads=list(current.object_list),
            page=current.number,
            pages=paginator.num_pages,
            total=paginator.count,
        )

    def list_messages(self, thread_id, page=None, limit=None):
        store.get_thread(thread_id)
        return store.list_messages(thread_id, page=page, limit=limit)

    # ========================
    # DELETE
    # ========================
    def delete_thread(self, thread_id):
        thread = store.delete_thread_cascade(thread_id)
        logger.info("Deleted thread %s of customer %s", thread_id, thread.customer_id)
        return thread
