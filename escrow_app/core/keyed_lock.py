import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class KeyedLock:
    """Per-id asyncio mutexes for single-writer sections inside one process.

    Row locks and the version column cover the cross-process case; this keeps
    concurrent tasks of the same worker from interleaving on one entity.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: defaultdict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._waiters: defaultdict[Hashable, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        self._waiters[key] += 1
        lock = self._locks[key]
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._waiters.pop(key, None)
                self._locks.pop(key, None)


contract_locks = KeyedLock("contract")
payment_locks = KeyedLock("payment")
