# tests/test_registry.py
import asyncio
from datetime import timedelta

import pytest
from channels.db import database_sync_to_async
from django.utils import timezone

from apps.chat.exceptions import AuthorizationFailure, NotFound
from apps.chat.models import ChatThread
from apps.chat.registry import ThreadRegistry
from apps.users.authentication import identity_for_user


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_concurrent_opens_resolve_to_one_thread(customer):
    registry = ThreadRegistry()

    threads = await asyncio.gather(*[registry.open_or_create(customer.pk) for _ in range(10)])

    assert len({t.pk for t in threads}) == 1
    count = await database_sync_to_async(ChatThread.objects.filter(customer=customer).count)()
    assert count == 1


@pytest.mark.django_db
def test_open_returns_existing_open_thread(customer, thread):
    registry = ThreadRegistry()

    assert registry.open_or_create_sync(customer.pk).pk == thread.pk
    assert ChatThread.objects.filter(customer=customer).count() == 1


@pytest.mark.django_db
def test_open_records_customer_ip_once(customer):
    registry = ThreadRegistry()

    created = registry.open_or_create_sync(customer.pk, "10.0.0.7")
    again = registry.open_or_create_sync(customer.pk, "10.0.0.99")

    assert created.customer_ip == "10.0.0.7"
    assert again.customer_ip == "10.0.0.7"


@pytest.mark.django_db
def test_open_fills_in_missing_ip(customer, thread):
    ThreadRegistry().open_or_create_sync(customer.pk, "192.168.1.5")

    thread.refresh_from_db()
    assert thread.customer_ip == "192.168.1.5"


@pytest.mark.django_db
def test_open_reopens_most_recent_closed_thread(customer):
    now = timezone.now()
    ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now - timedelta(days=3))
    latest = ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now - timedelta(days=1))

    thread = ThreadRegistry().open_or_create_sync(customer.pk)

    assert thread.pk == latest.pk
    assert thread.status == ChatThread.OPEN
    assert ChatThread.objects.filter(customer=customer).count() == 2


@pytest.mark.django_db
def test_admin_list_consolidates_duplicate_threads(customer, other_customer):
    now = timezone.now()
    older = ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now - timedelta(hours=5))
    newer = ChatThread.objects.create(customer=customer, last_message_at=now - timedelta(hours=1))
    other = ChatThread.objects.create(customer=other_customer, last_message_at=now - timedelta(hours=3))

    page = ThreadRegistry().list_for_admin(page=1, page_size=10)

    assert [t.pk for t in page.threads] == [newer.pk, other.pk]
    assert older.pk not in [t.pk for t in page.threads]
    assert page.pagination == {"current": 1, "pages": 1, "total": 2}


@pytest.mark.django_db
def test_admin_list_shows_the_thread_the_customer_writes_to(customer):
    now = timezone.now()
    live = ChatThread.objects.create(customer=customer, last_message_at=now - timedelta(days=2))
    ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now)
    registry = ThreadRegistry()

    listed = registry.list_for_admin()
    opened = registry.open_or_create_sync(customer.pk)

    assert [t.pk for t in listed.threads] == [live.pk]
    assert opened.pk == live.pk


@pytest.mark.django_db
def test_admin_list_without_open_thread_shows_the_one_that_would_reopen(customer):
    now = timezone.now()
    ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now - timedelta(days=2))
    latest = ChatThread.objects.create(customer=customer, status=ChatThread.CLOSED, last_message_at=now)
    registry = ThreadRegistry()

    listed = registry.list_for_admin()
    reopened = registry.open_or_create_sync(customer.pk)

    assert [t.pk for t in listed.threads] == [latest.pk]
    assert reopened.pk == latest.pk


@pytest.mark.django_db
def test_admin_list_paginates_and_searches(make_user):
    now = timezone.now()
    for i in range(5):
        user = make_user(f"shopper{i}")
        ChatThread.objects.create(
            customer=user,
            last_message_text="refund please" if i % 2 else "where is my order",
            last_message_at=now - timedelta(minutes=i),
        )
    registry = ThreadRegistry()

    second = registry.list_for_admin(page=2, page_size=2)
    refunds = registry.list_for_admin(query="REFUND")
    beyond = registry.list_for_admin(page=9, page_size=2)

    assert len(second.threads) == 2
    assert second.pagination == {"current": 2, "pages": 3, "total": 5}
    assert refunds.total == 2
    assert all("refund" in t.last_message_text for t in refunds.threads)
    assert beyond.threads == []
    assert beyond.total == 5


@pytest.mark.django_db
def test_authorize_limits_customers_to_their_own_thread(customer, other_customer, admin_user, thread):
    registry = ThreadRegistry()

    assert registry.get_authorized_thread(identity_for_user(customer), thread.pk).pk == thread.pk
    assert registry.get_authorized_thread(identity_for_user(admin_user), thread.pk).pk == thread.pk
    with pytest.raises(AuthorizationFailure):
        registry.get_authorized_thread(identity_for_user(other_customer), thread.pk)


@pytest.mark.django_db
def test_delete_thread_then_lookups_fail(thread):
    registry = ThreadRegistry()

    registry.delete_thread(thread.pk)

    with pytest.raises(NotFound):
        registry.list_messages(thread.pk)
    assert registry.list_for_admin().total == 0
