"""Per-date mutual exclusion for capacity-affecting writes.

Admission reads occupancy over a turnover window, so any two bookings on
the same date may compete for the same seats. Every read-evaluate-write
sequence therefore runs while holding the lock for its date.
"""
import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from typing import AsyncIterator, Dict


class SlotLocks:
    """Registry of one ``asyncio.Lock`` per calendar date (single process)."""

    def __init__(self):
        self._locks: Dict[date, asyncio.Lock] = {}

    def lock_for(self, day: date) -> asyncio.Lock:
        return self._locks.setdefault(day, asyncio.Lock())

    @asynccontextmanager
    async def hold(self, *days: date) -> AsyncIterator[None]:
        """Acquire the locks for ``days`` in date order to avoid deadlocks."""
        async with AsyncExitStack() as stack:
            for day in sorted(set(days)):
                await stack.enter_async_context(self.lock_for(day))
            yield

    def prune(self, before: date) -> int:
        """Drop idle locks for dates earlier than ``before``."""
        stale = [d for d, lock in self._locks.items() if d < before and not lock.locked()]
        for day in stale:
            del self._locks[day]
        return len(stale)

    def __len__(self) -> int:
        return len(self._locks)
