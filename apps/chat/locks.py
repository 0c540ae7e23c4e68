# apps/chat/locks.py
import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager


class KeyedLock:
    """
    One asyncio.Lock per key, created on demand and dropped when idle.

    Work on the same key is serialized; different keys never wait on each
    other.
    """

    def __init__(self):
        self._locks = {}
        self._holders = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                self._locks.pop(key, None)

    def is_locked(self, key):
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    def __len__(self):
        return len(self._locks)
