"""Per-doctor serialization of slot reservation."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID
from weakref import WeakValueDictionary


class ProviderLocks:
    """
    One asyncio lock per doctor, held while checking and reserving a slot.

    Locks live only as long as someone holds or waits on them. Across worker
    processes the doctor row lock and the active-slot unique index take over.
    """

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def _lock_for(self, doctor_id: UUID) -> asyncio.Lock:
        key = str(doctor_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, doctor_id: UUID) -> AsyncIterator[None]:
        lock = self._lock_for(doctor_id)
        async with lock:
            yield


# Shared by every request handled in this process
provider_locks = ProviderLocks()
