# apps/chat/presence.py
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from datetime import datetime

from django.utils import timezone

logger = logging.getLogger(__name__)


@dataclass
class PresenceRecord:
    online: bool = False
    last_seen_at: Optional[datetime] = None
    ip_address: str = ''
    connections: int = 0

    def as_payload(self, user_id):
        return {
            'user_id': user_id,
            'online': self.online,
            'last_seen_at': self.last_seen_at.isoformat() if self.last_seen_at else None,
        }


class PresenceTracker:
    """
    Process-local online/offline bookkeeping.

    A user stays online while at least one of their connections is open.
    Nothing here is persisted; after a restart everybody is unknown until they
    reconnect.
    """

    def __init__(self):
        self._records: Dict[int, PresenceRecord] = {}

    def mark_online(self, user_id, ip_address=''):
        """Returns True when the user just came online."""
        record = self._records.setdefault(user_id, PresenceRecord())
        came_online = not record.online
        record.connections += 1
        record.online = True
        record.last_seen_at = None
        if ip_address:
            record.ip_address = ip_address
        if came_online:
            logger.info("User %s online from %s", user_id, ip_address or "unknown")
        return came_online

    def mark_offline(self, user_id):
        """Returns True when the user's last connection just went away."""
        record = self._records.get(user_id)
        if record is None or not record.online:
            return False
        record.connections = max(record.connections - 1, 0)
        if record.connections:
            return False
        record.online = False
        record.last_seen_at = timezone.now()
        logger.info("User %s offline", user_id)
        return True

    def is_online(self, user_id):
        record = self._records.get(user_id)
        return bool(record and record.online)

    def last_seen_at(self, user_id):
        record = self._records.get(user_id)
        return record.last_seen_at if record else None

    def ip_address(self, user_id):
        record = self._records.get(user_id)
        return record.ip_address if record else ''

    def get(self, user_id):
        return self._records.get(user_id)

    def payload(self, user_id):
        return (self._records.get(user_id) or PresenceRecord()).as_payload(user_id)

    def online_users(self):
        return {user_id for user_id, record in self._records.items() if record.online}

    def reset(self):
        self._records.clear()
