# tests/test_locks.py
import asyncio

import pytest

from apps.chat.locks import KeyedLock

pytestmark = pytest.mark.asyncio


async def test_same_key_is_serialized():
    locks = KeyedLock()
    trace = []

    async def worker(name):
        async with locks.hold("thread-1"):
            trace.append(f"{name}:in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"), worker("c"))

    assert trace == ["a:in", "a:out", "b:in", "b:out", "c:in", "c:out"]


async def test_different_keys_run_in_parallel():
    locks = KeyedLock()
    both_inside = asyncio.Event()
    inside = set()

    async def worker(key):
        async with locks.hold(key):
            inside.add(key)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(worker("thread-1"), worker("thread-2"))

    assert inside == {"thread-1", "thread-2"}


async def test_idle_locks_are_dropped():
    locks = KeyedLock()

    async with locks.hold("k"):
        assert locks.is_locked("k")
        assert len(locks) == 1

    assert not locks.is_locked("k")
    assert len(locks) == 0


async def test_lock_released_when_body_raises():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("k"):
            raise RuntimeError("boom")

    assert len(locks) == 0
    async with locks.hold("k"):
        pass
