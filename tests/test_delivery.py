# tests/test_delivery.py
import pytest

from apps.chat.delivery import DeliveryCoordinator, opposite_side
from apps.chat.models import ChatMessage, ChatThread

pytestmark = pytest.mark.django_db


def test_opposite_side():
    assert opposite_side(ChatMessage.CUSTOMER) == ChatMessage.ADMIN
    assert opposite_side(ChatMessage.ADMIN) == ChatMessage.CUSTOMER


def test_customer_message_increments_admin_unread(thread, customer):
    delivery = DeliveryCoordinator()

    for text in ("one", "two", "three"):
        delivery.record(thread.pk, ChatMessage.CUSTOMER, sender_id=customer.pk, text=text)

    thread.refresh_from_db()
    assert thread.unread_for_admin == 3
    assert thread.unread_for_customer == 0
    assert thread.last_message_text == "three"


def test_admin_message_increments_customer_unread(thread, admin_user):
    recorded = DeliveryCoordinator().record(thread.pk, ChatMessage.ADMIN, sender_id=admin_user.pk, text="hi there")

    assert recorded.created
    assert recorded.thread.unread_for_customer == 1
    assert recorded.thread.unread_for_admin == 0
    assert recorded.thread.last_message_at == recorded.message.created_at


def test_mark_read_resets_to_zero(thread):
    delivery = DeliveryCoordinator()
    delivery.record(thread.pk, ChatMessage.CUSTOMER, text="a")
    delivery.record(thread.pk, ChatMessage.CUSTOMER, text="b")

    cleared = delivery.mark_read(thread.pk, ChatMessage.ADMIN)

    assert cleared.unread_for_admin == 0
    assert delivery.unread_count(cleared, ChatMessage.ADMIN) == 0


def test_image_only_message_uses_image_preview(thread):
    recorded = DeliveryCoordinator().record(thread.pk, ChatMessage.CUSTOMER, image_url="/media/chat/x.png")

    assert recorded.thread.last_message_text == "[image]"
    assert recorded.message.text == ""


def test_repeated_client_message_id_is_stored_once(thread):
    delivery = DeliveryCoordinator()

    first = delivery.record(thread.pk, ChatMessage.CUSTOMER, text="hello", client_message_id="c-1")
    retry = delivery.record(thread.pk, ChatMessage.CUSTOMER, text="hello", client_message_id="c-1")

    assert first.created and not retry.created
    assert retry.message.pk == first.message.pk
    assert ChatMessage.objects.filter(thread=thread).count() == 1
    assert ChatThread.objects.get(pk=thread.pk).unread_for_admin == 1


def test_total_unread_follows_thread_changes(thread, other_customer):
    delivery = DeliveryCoordinator()
    second = ChatThread.objects.create(customer=other_customer)
    delivery.record(thread.pk, ChatMessage.CUSTOMER, text="a")
    delivery.record(second.pk, ChatMessage.CUSTOMER, text="b")
    delivery.record(second.pk, ChatMessage.CUSTOMER, text="c")

    assert delivery.total_unread_for_admin() == 3

    second.delete()
    assert delivery.total_unread_for_admin() == 1
