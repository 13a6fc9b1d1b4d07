"""Per-backend serialization: at most one in-flight call per backend identity."""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class BackendLanes:
    """One ``asyncio.Lock`` per identity, created on first use.

    Calls to the same identity queue in FIFO order behind the lock; calls to
    different identities never wait on each other.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, identity: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = self._locks[identity] = asyncio.Lock()
            return lock

    @asynccontextmanager
    async def hold(self, identity: str) -> AsyncIterator[None]:
        lock = self._lock_for(identity)
        if lock.locked():
            logger.debug("Lane %s busy, queueing", identity)
        async with lock:
            yield
