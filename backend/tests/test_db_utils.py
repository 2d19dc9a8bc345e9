import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from locationcheck.utils.db_utils import KeyedLocks, retry_on_lock


async def test_same_key_is_serialized_other_keys_are_not():
    locks = KeyedLocks()
    events = []

    async def writer(key, name):
        async with locks.hold(key):
            events.append(f"{name} in")
            await asyncio.sleep(0.05)
            events.append(f"{name} out")

    await asyncio.gather(writer("d1", "a"), writer("d1", "b"), writer("d2", "c"))

    assert events.index("a out") < events.index("b in")
    assert events.index("c in") < events.index("a out")
    # Locks are dropped once nobody holds them
    assert locks._locks == {}


async def test_retry_on_lock_retries_transient_errors():
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        return "ok"

    assert await retry_on_lock(flaky, base_delay=0.001) == "ok"
    assert len(attempts) == 3


async def test_retry_on_lock_raises_other_errors_immediately():
    attempts = []

    async def broken():
        attempts.append(1)
        raise OperationalError("INSERT", {}, Exception("no such table: devices"))

    with pytest.raises(OperationalError):
        await retry_on_lock(broken, base_delay=0.001)
    assert len(attempts) == 1
