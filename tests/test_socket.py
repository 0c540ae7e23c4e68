# tests/test_socket.py
import pytest
import socketio

from apps.chat.hub import ConnectionState
from apps.chat.socket import client_ip, connect_credential, create_socket_server, thread_id_from
from tests.conftest import token_for


@pytest.fixture
def wired(hub, server):
    """Socket.IO server bound to the test hub, emitting into the recorder."""
    sio, _ = create_socket_server(hub)
    hub.server = server
    return sio.handlers["/"]


class TestRequestHelpers:

    def test_client_ip_prefers_forwarded_for(self):
        environ = {"HTTP_X_FORWARDED_FOR": "203.0.113.7, 10.0.0.1", "REMOTE_ADDR": "10.0.0.1"}

        assert client_ip(environ) == "203.0.113.7"

    def test_client_ip_falls_back_to_scope(self):
        assert client_ip({"REMOTE_ADDR": "10.0.0.2"}) == "10.0.0.2"
        assert client_ip({"asgi.scope": {"client": ("192.0.2.9", 51000)}}) == "192.0.2.9"
        assert client_ip({}) == ""

    def test_connect_credential_sources(self):
        assert connect_credential({}, {"token": "abc"}) == "abc"
        assert connect_credential({"HTTP_AUTHORIZATION": "Bearer xyz"}, None) == "Bearer xyz"
        assert connect_credential({"HTTP_AUTHORIZATION": "Basic xyz"}, {}) is None

    def test_thread_id_from_payload(self):
        assert thread_id_from({"thread_id": 7}) == 7
        assert thread_id_from(7) == 7


def test_server_is_wired_to_hub(hub):
    sio, wired_hub = create_socket_server(hub)

    assert wired_hub is hub
    assert hub.server is sio
    assert {"connect", "authenticate", "open_thread", "join", "leave", "send", "mark_read", "disconnect"} <= set(sio.handlers["/"])


# ========================
# EVENTS
# ========================
@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_connect_with_token_in_auth(wired, hub, customer):
    accepted = await wired["connect"]("sid-1", {"REMOTE_ADDR": "10.0.0.5"}, {"token": token_for(customer)})

    assert accepted is True
    conn = hub.get_connection("sid-1")
    assert conn.state is ConnectionState.IDLE
    assert conn.ip_address == "10.0.0.5"


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_connect_with_bad_token_is_refused(wired, hub):
    with pytest.raises(socketio.exceptions.ConnectionRefusedError):
        await wired["connect"]("sid-1", {}, {"token": "not-a-token"})

    assert hub.get_connection("sid-1") is None


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_deferred_authenticate_acknowledges_identity(wired, hub, customer):
    await wired["connect"]("sid-1", {}, None)

    ack = await wired["authenticate"]("sid-1", {"token": token_for(customer)})

    assert ack == {"success": True, "user_id": customer.pk, "role": "customer"}
    await wired["disconnect"]("sid-1")


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_events_before_authentication_are_refused(wired, hub):
    await wired["connect"]("sid-1", {}, None)

    ack = await wired["send"]("sid-1", {"thread_id": 1, "text": "hi"})
    read_ack = await wired["mark_read"]("sid-1", {"thread_id": 1})

    assert ack["success"] is False
    assert ack["code"] == "authentication_failed"
    assert read_ack["code"] == "authentication_failed"
    await wired["disconnect"]("sid-1")


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_customer_conversation_over_events(wired, hub, server, customer, admin_user):
    await wired["connect"]("cust-1", {}, {"token": token_for(customer)})
    await wired["connect"]("admin-1", {}, {"token": token_for(admin_user)})

    opened = await wired["open_thread"]("cust-1")
    thread_id = opened["thread"]["thread_id"]
    joined = await wired["join"]("admin-1", {"thread_id": thread_id})
    sent = await wired["send"]("cust-1", {"thread_id": thread_id, "text": "my parcel is late", "client_message_id": "c-1"})

    assert opened["success"] is True
    assert joined["thread"]["thread_id"] == thread_id
    assert sent["success"] is True
    assert sent["message"]["text"] == "my parcel is late"
    assert sent["message"]["client_message_id"] == "c-1"
    [(_, payload, _)] = server.events("message", to="admin-1")
    assert payload["id"] == sent["message"]["id"]

    read = await wired["mark_read"]("admin-1", thread_id)
    assert read["thread"]["unread_for_admin"] == 0

    left = await wired["leave"]("admin-1")
    assert left == {"success": True}
    assert hub.room_members(thread_id) == {"cust-1"}

    await wired["disconnect"]("cust-1")
    await wired["disconnect"]("admin-1")
    assert hub.get_connection("cust-1") is None


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_send_with_empty_text_is_rejected(wired, customer):
    await wired["connect"]("cust-1", {}, {"token": token_for(customer)})
    opened = await wired["open_thread"]("cust-1")

    ack = await wired["send"]("cust-1", {"thread_id": opened["thread"]["thread_id"], "text": "   "})

    assert ack == {"success": False, "error": "Message text required", "code": "invalid"}
    await wired["disconnect"]("cust-1")


@pytest.mark.asyncio
@pytest.mark.django_db(transaction=True)
async def test_send_with_non_string_text_is_acknowledged_as_invalid(wired, customer):
    await wired["connect"]("cust-1", {}, {"token": token_for(customer)})
    opened = await wired["open_thread"]("cust-1")

    ack = await wired["send"]("cust-1", {"thread_id": opened["thread"]["thread_id"], "text": 123})

    assert ack == {"success": False, "error": "Message text must be a string", "code": "invalid"}
    await wired["disconnect"]("cust-1")
