"""Per-position critical sections.

Read-modify-write of a position's cost basis must not interleave, so every
mutation holds the position's lock for the duration of the change. A lock
lives in the table only while some task holds or waits for it.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

_locks: dict[uuid.UUID, asyncio.Lock] = {}
_holders: dict[uuid.UUID, int] = {}


@asynccontextmanager
async def position_lock(position_id: uuid.UUID) -> AsyncIterator[None]:
    lock = _locks.setdefault(position_id, asyncio.Lock())
    _holders[position_id] = _holders.get(position_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _holders[position_id] -= 1
        if _holders[position_id] == 0:
            del _holders[position_id]
            del _locks[position_id]
