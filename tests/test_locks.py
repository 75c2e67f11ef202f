import asyncio
import pytest
from cardshop.db.locks import KeyedLocks


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLocks()
    events = []

    async def worker(name):
        async with locks.hold(1):
            events.append(f"{name}:in")
            await asyncio.sleep(0.01)
            events.append(f"{name}:out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_keys_are_independent_unless_single_writer():
    locks = KeyedLocks()
    async with locks.hold(1):
        assert locks.locked(1)
        assert not locks.locked(2)

    single = KeyedLocks(single_writer=True)
    async with single.hold(1):
        assert single.locked(2)
    assert len(single) == 0
