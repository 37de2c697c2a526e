"""Per-subscription locks that serialise lifecycle mutations within a process."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SubscriptionLockRegistry:
    """
    Hands out one ``asyncio.Lock`` per subscription id.

    Locks are dropped once no coroutine holds or waits on them, so the registry
    only ever contains subscriptions with mutations in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every request handled in this process
subscription_locks = SubscriptionLockRegistry()
