"""
Per-complaint mutation locks.

A mutation holds the lock of exactly one complaint for the duration of its
transaction.  A second mutation arriving while the lock is held fails fast with
Conflict instead of queueing, so two simultaneous assign() calls give one
success and one Conflict.  There is no global lock: different complaints never
contend.

This only linearizes mutations inside one process; across processes the
Complaint.version column turns a lost race into a StaleDataError, which the
services also report as Conflict.
"""
import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from grievance.core.errors import Conflict

logger = logging.getLogger(__name__)


class ComplaintLocks:
    def __init__(self) -> None:
        # Entries disappear once no coroutine holds a reference to the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_held(self, complaint_id: object) -> bool:
        lock = self._locks.get(str(complaint_id))
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, complaint_id: object) -> AsyncIterator[None]:
        key = str(complaint_id)
        lock = self._lock_for(key)
        if lock.locked():
            logger.info("Rejecting concurrent mutation on complaint %s", key)
            raise Conflict(f"Complaint {key} is being modified by another request")
        async with lock:
            yield


complaint_locks = ComplaintLocks()
