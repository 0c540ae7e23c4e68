# apps/chat/hub.py
"""
Realtime hub: connection lifecycle, thread rooms and event fan-out.

Every new message, text or image, goes through ``RealtimeHub.post_message``:
durable write first, then one ``message`` event per room member and one
``thread_updated`` event per admin connection and per connection of the
thread's customer. Operations on the same thread are serialized by a
per-thread lock; unrelated threads never wait on each other.

The hub does not own a transport. It is given a server object exposing
``emit(event, data, to=sid)`` and ``disconnect(sid)`` (a python-socketio
AsyncServer in production, see ``apps.chat.socket``).
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from channels.db import database_sync_to_async

from apps.users.authentication import Identity, verify_credential
from .conf import chat_setting
from .delivery import DeliveryCoordinator
from .exceptions import AuthenticationFailure, AuthorizationFailure, ValidationFailure
from .locks import KeyedLock
from .presence import PresenceTracker
from .registry import ThreadRegistry
from .serializers import MessageSerializer, ThreadUpdateSerializer

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = 'connecting'
    IDLE = 'idle'
    JOINED = 'joined'
    REJECTED = 'rejected'
    DISCONNECTED = 'disconnected'


@dataclass
class Connection:
    sid: str
    ip_address: str = ''
    state: ConnectionState = ConnectionState.CONNECTING
    identity: Optional[Identity] = None
    thread_id: Optional[int] = None
    auth_deadline: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_authenticated(self):
        return self.state in (ConnectionState.IDLE, ConnectionState.JOINED)


class RealtimeHub:
    def __init__(self, server, registry=None, delivery=None, presence=None, locks=None):
        self.server = server
        self.locks = locks or KeyedLock()
        self.registry = registry or ThreadRegistry(self.locks)
        self.delivery = delivery or DeliveryCoordinator()
        self.presence = presence or PresenceTracker()

        self._connections: Dict[str, Connection] = {}
        self._rooms: Dict[int, Set[str]] = {}
        self._user_sids: Dict[int, Set[str]] = {}
        self._admin_sids: Set[str] = set()

    # ========================
    # INSPECTION
    # ========================
    def get_connection(self, sid):
        return self._connections.get(sid)

    def room_members(self, thread_id):
        return set(self._rooms.get(thread_id, ()))

    def connections_for(self, user_id):
        return set(self._user_sids.get(user_id, ()))

    def admin_connections(self):
        return set(self._admin_sids)

    # ========================
    # CONNECTION LIFECYCLE
    # ========================
    async def connect(self, sid, ip_address='', credential=None):
        """
        Register a new connection.

        With a credential the connection is authenticated on the spot and a
        failure raises AuthenticationFailure. Without one it waits in
        CONNECTING until ``authenticate`` is called or AUTH_TIMEOUT expires.
        """
        conn = Connection(sid=sid, ip_address=ip_address or '')
        self._connections[sid] = conn
        logger.info("Connection %s opened from %s", sid, conn.ip_address or "unknown")

        if credential:
            await self.authenticate(sid, credential, close_on_failure=False)
        else:
            conn.auth_deadline = asyncio.ensure_future(
                self._expire_unauthenticated(sid, chat_setting('AUTH_TIMEOUT'))
            )
        return conn

    async def authenticate(self, sid, credential, close_on_failure=True):
        conn = self._connections.get(sid)
        if conn is None:
            raise AuthenticationFailure("Unknown connection")
        if conn.is_authenticated:
            return conn.identity

        try:
            identity = await asyncio.wait_for(
                database_sync_to_async(verify_credential)(credential),
                timeout=chat_setting('AUTH_TIMEOUT'),
            )
        except asyncio.TimeoutError as e:
            await self._reject(conn, close=close_on_failure)
            raise AuthenticationFailure("Authentication timed out") from e
        except AuthenticationFailure:
            await self._reject(conn, close=close_on_failure)
            raise

        if self._connections.get(sid) is not conn:
            raise AuthenticationFailure("Connection closed")

        self._cancel_deadline(conn)
        conn.identity = identity
        conn.state = ConnectionState.IDLE
        self._user_sids.setdefault(identity.user_id, set()).add(sid)
        if identity.is_admin:
            self._admin_sids.add(sid)
        logger.info("Connection %s authenticated as %s %s", sid, identity.role, identity.user_id)

        if self.presence.mark_online(identity.user_id, conn.ip_address):
            await self._emit(
                'presence_update',
                self.presence.payload(identity.user_id),
                self._admin_sids - {sid},
            )
        return identity

    async def disconnect(self, sid):
        conn = self._connections.pop(sid, None)
        if conn is None:
            return None

        was_authenticated = conn.is_authenticated
        self._cancel_deadline(conn)
        self._leave_room(conn)
        conn.state = ConnectionState.DISCONNECTED

        if was_authenticated:
            user_id = conn.identity.user_id
            sids = self._user_sids.get(user_id)
            if sids is not None:
                sids.discard(sid)
                if not sids:
                    del self._user_sids[user_id]
            self._admin_sids.discard(sid)
            if self.presence.mark_offline(user_id):
                await self._emit('presence_update', self.presence.payload(user_id), self._admin_sids)

        logger.info("Connection %s disconnected", sid)
        return conn

    async def _expire_unauthenticated(self, sid, timeout):
        await asyncio.sleep(timeout)
        conn = self._connections.get(sid)
        if conn is not None and conn.state is ConnectionState.CONNECTING:
            logger.info("Connection %s did not authenticate within %ss", sid, timeout)
            await self._reject(conn, close=True)

    async def _reject(self, conn, close=True):
        conn.state = ConnectionState.REJECTED
        self._cancel_deadline(conn)
        self._connections.pop(conn.sid, None)
        logger.warning("Connection %s rejected", conn.sid)
        if close:
            try:
                await self.server.disconnect(conn.sid)
            except Exception:
                logger.warning("Could not close connection %s", conn.sid, exc_info=True)

    def _cancel_deadline(self, conn):
        task = conn.auth_deadline
        conn.auth_deadline = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    def _require_authenticated(self, sid):
        conn = self._connections.get(sid)
        if conn is None or not conn.is_authenticated:
            raise AuthenticationFailure("Not authenticated")
        return conn

    # ========================
    # ROOMS
    # ========================
    async def open_thread(self, sid):
        """Find or create the customer's own thread and join its room."""
        conn = self._require_authenticated(sid)
        if not conn.identity.is_customer:
            raise AuthorizationFailure("Only customers have an own thread")
        thread = await self.registry.open_or_create(conn.identity.user_id, conn.ip_address)
        await self.join(sid, thread.pk)
        return thread

    async def join(self, sid, thread_id):
        conn = self._require_authenticated(sid)
        thread = await self._authorized_thread(conn.identity, thread_id)
        async with self.locks.hold(('thread', thread.pk)):
            # may have been deleted while waiting for the lock
            await database_sync_to_async(self.registry.get_thread)(thread.pk)
            if conn.thread_id != thread.pk:
                self._leave_room(conn)
                self._rooms.setdefault(thread.pk, set()).add(sid)
                conn.thread_id = thread.pk
            conn.state = ConnectionState.JOINED
        logger.info("Connection %s joined thread %s", sid, thread.pk)
        return thread

    async def leave(self, sid):
        conn = self._require_authenticated(sid)
        self._leave_room(conn)
        return conn

    def _leave_room(self, conn):
        if conn.thread_id is None:
            return
        members = self._rooms.get(conn.thread_id)
        if members is not None:
            members.discard(conn.sid)
            if not members:
                del self._rooms[conn.thread_id]
        conn.thread_id = None
        if conn.state is ConnectionState.JOINED:
            conn.state = ConnectionState.IDLE

    # ========================
    # MESSAGES
    # ========================
    async def send(self, sid, thread_id, text, client_message_id=None):
        conn = self._require_authenticated(sid)
        if text is None or (isinstance(text, str) and not text.strip()):
            raise ValidationFailure("Message text required")
        return await self.post_message(conn.identity, thread_id, text=text, client_message_id=client_message_id)

    async def post_message(self, identity, thread_id, text='', image_url='', client_message_id=None):
        """
        Store a message and fan it out. The only path that creates messages.

        Nothing is broadcast unless the write committed. A client_message_id
        already stored on the thread returns the earlier message without a
        second write or broadcast.
        """
        if text is not None and not isinstance(text, str):
            raise ValidationFailure("Message text must be a string")
        if client_message_id is not None and not isinstance(client_message_id, str):
            raise ValidationFailure("client_message_id must be a string")
        text = (text or '').strip()
        if not text and not image_url:
            raise ValidationFailure("Message text or image required")
        if len(text) > chat_setting('MAX_MESSAGE_LENGTH'):
            raise ValidationFailure("Message is too long")

        thread = await self._authorized_thread(identity, thread_id)
        async with self.locks.hold(('thread', thread.pk)):
            recorded = await database_sync_to_async(self.delivery.record)(
                thread.pk,
                identity.role,
                sender_id=identity.user_id,
                text=text,
                image_url=image_url,
                client_message_id=client_message_id or None,
            )
            if not recorded.created:
                logger.info("Duplicate message %s on thread %s ignored", client_message_id, thread.pk)
                return recorded.message

            await self._emit('message', dict(MessageSerializer(recorded.message).data), self.room_members(thread.pk))
            await self._broadcast_thread_update(recorded.thread)
        return recorded.message

    # ========================
    # READ STATE & DELETE
    # ========================
    async def mark_read(self, identity, thread_id):
        """Reset the caller's side of the unread counters."""
        thread = await self._authorized_thread(identity, thread_id)
        async with self.locks.hold(('thread', thread.pk)):
            thread = await database_sync_to_async(self.delivery.mark_read)(thread.pk, identity.role)
            await self._broadcast_thread_update(thread)
        return thread

    async def delete_thread(self, identity, thread_id):
        if not identity.is_admin:
            raise AuthorizationFailure("Admin access required")
        thread = await database_sync_to_async(self.registry.get_thread)(thread_id)
        async with self.locks.hold(('thread', thread.pk)):
            thread = await database_sync_to_async(self.registry.delete_thread)(thread.pk)
            members = self._rooms.pop(thread.pk, set())
            for sid in members:
                conn = self._connections.get(sid)
                if conn is not None:
                    conn.thread_id = None
                    conn.state = ConnectionState.IDLE
            audience = members | self._admin_sids | self.connections_for(thread.customer_id)
            await self._emit('thread_deleted', {'thread_id': thread.pk}, audience)
        return thread

    # ========================
    # FAN-OUT
    # ========================
    async def _authorized_thread(self, identity, thread_id):
        return await database_sync_to_async(self.registry.get_authorized_thread)(identity, thread_id)

    async def _broadcast_thread_update(self, thread):
        audience = self._admin_sids | self.connections_for(thread.customer_id)
        await self._emit('thread_updated', dict(ThreadUpdateSerializer(thread).data), audience)

    async def _emit(self, event, payload, sids):
        sids = list(sids)
        if not sids:
            return 0
        results = await asyncio.gather(*[self._safe_emit(event, payload, sid) for sid in sids])
        return sum(results)

    async def _safe_emit(self, event, payload, sid):
        try:
            await self.server.emit(event, payload, to=sid)
        except Exception:
            logger.warning("Failed to deliver %s to %s", event, sid, exc_info=True)
            return False
        return True
