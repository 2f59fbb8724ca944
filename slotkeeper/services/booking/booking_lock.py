# slotkeeper/services/booking/booking_lock.py
"""Per-rule admission locks serializing the check-then-insert of bookings"""
import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Optional, Protocol
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from slotkeeper.config.redis import RedisKeys, get_redis
from slotkeeper.config.settings import Settings, get_settings
from slotkeeper.core.exceptions import StorageError

logger = logging.getLogger(__name__)


class BookingLock(Protocol):
    def hold(self, rule_id: UUID) -> AsyncContextManager[None]: ...


class LocalBookingLock:
    """In-process lock, one asyncio.Lock per rule while anyone holds or awaits it"""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, rule_id: UUID) -> AsyncIterator[None]:
        lock = self._locks.get(rule_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[rule_id] = lock
        async with lock:
            yield


class RedisBookingLock:
    """Lock shared by every process talking to the same Redis"""

    def __init__(self, client: redis.Redis, timeout: float, blocking_timeout: Optional[float] = None):
        self.client = client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout if blocking_timeout is not None else timeout

    @asynccontextmanager
    async def hold(self, rule_id: UUID) -> AsyncIterator[None]:
        name = RedisKeys.BOOKING_LOCK.format(rule_id=rule_id)
        lock = self.client.lock(name, timeout=self.timeout, blocking_timeout=self.blocking_timeout)
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise StorageError(f"Could not acquire booking lock {name}: {e}") from e
        if not acquired:
            raise StorageError(f"Timed out waiting for booking lock {name}")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Expired while held
                logger.warning(f"Booking lock {name} released late: {e}")


async def create_booking_lock(settings: Optional[Settings] = None) -> BookingLock:
    settings = settings or get_settings()
    if settings.BOOKING_LOCK_BACKEND == "redis":
        client = await get_redis()
        return RedisBookingLock(client, timeout=settings.BOOKING_LOCK_TIMEOUT_SECONDS)
    return LocalBookingLock()
