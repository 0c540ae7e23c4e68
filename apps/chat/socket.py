# apps/chat/socket.py
import logging

import socketio
from django.conf import settings

from .exceptions import AuthenticationFailure, ChatError
from .hub import RealtimeHub
from .serializers import MessageSerializer, ThreadSerializer

logger = logging.getLogger(__name__)


def client_ip(environ):
    forwarded = environ.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded:
        return forwarded.split(',')[0].strip()
    if environ.get('REMOTE_ADDR'):
        return environ['REMOTE_ADDR']
    client = (environ.get('asgi.scope') or {}).get('client')
    return client[0] if client else ''


def connect_credential(environ, auth):
    token = auth.get('token') if isinstance(auth, dict) else None
    if token:
        return token
    header = environ.get('HTTP_AUTHORIZATION', '')
    if header.lower().startswith('bearer '):
        return header
    return None


def thread_id_from(data):
    if isinstance(data, dict):
        return data.get('thread_id')
    return data


async def acknowledge(coro, build):
    """Run a hub call and turn its outcome into a Socket.IO acknowledgement."""
    try:
        result = await coro
    except ChatError as e:
        return e.as_payload()
    return {"success": True, **build(result)}


def create_socket_server(hub=None, **server_options):
    """
    Build the Socket.IO server and wire its events to a RealtimeHub.

    Returns ``(sio, hub)``; the caller owns both.
    """
    server_options.setdefault('async_mode', 'asgi')
    server_options.setdefault('cors_allowed_origins', getattr(settings, 'SOCKETIO_CORS_ALLOWED_ORIGINS', '*'))
    sio = socketio.AsyncServer(**server_options)
    if hub is None:
        hub = RealtimeHub(sio)
    else:
        hub.server = sio

    # --- Socket.IO events ---
    @sio.event
    async def connect(sid, environ, auth=None):
        credential = connect_credential(environ, auth)
        try:
            await hub.connect(sid, client_ip(environ), credential)
        except AuthenticationFailure as e:
            raise socketio.exceptions.ConnectionRefusedError(str(e))
        return True

    @sio.event
    async def authenticate(sid, data=None):
        token = data.get('token') if isinstance(data, dict) else data
        return await acknowledge(
            hub.authenticate(sid, token),
            lambda identity: {"user_id": identity.user_id, "role": identity.role},
        )

    @sio.event
    async def open_thread(sid, data=None):
        return await acknowledge(
            hub.open_thread(sid),
            lambda thread: {"thread": dict(ThreadSerializer(thread).data)},
        )

    @sio.event
    async def join(sid, data=None):
        return await acknowledge(
            hub.join(sid, thread_id_from(data)),
            lambda thread: {"thread": dict(ThreadSerializer(thread).data)},
        )

    @sio.event
    async def leave(sid, data=None):
        return await acknowledge(hub.leave(sid), lambda conn: {})

    @sio.event
    async def send(sid, data=None):
        data = data if isinstance(data, dict) else {}
        return await acknowledge(
            hub.send(sid, data.get('thread_id'), data.get('text', ''), data.get('client_message_id')),
            lambda message: {"message": dict(MessageSerializer(message).data)},
        )

    @sio.event
    async def mark_read(sid, data=None):
        conn = hub.get_connection(sid)
        if conn is None or not conn.is_authenticated:
            return AuthenticationFailure("Not authenticated").as_payload()
        return await acknowledge(
            hub.mark_read(conn.identity, thread_id_from(data)),
            lambda thread: {"thread": dict(ThreadSerializer(thread).data)},
        )

    @sio.event
    async def disconnect(sid, *args):
        await hub.disconnect(sid)

    return sio, hub
