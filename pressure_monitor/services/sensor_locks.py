"""Per-sensor serialization boundary shared by session and ingestion services."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SensorLockRegistry:
    """
    One asyncio lock per sensor id.

    Every check-then-write on a sensor's state (open-session uniqueness, alert
    quiet windows, reading status) runs while holding that sensor's lock, so two
    concurrent callers never both see "nothing there yet". Locks are FIFO, so
    same-sensor callers proceed in arrival order.

    A lock lives only while someone holds or waits for it; ids that are never
    seen again (rejected ingests from unknown sensors) leave nothing behind.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, sensor_id: str) -> AsyncIterator[None]:
        """Acquire the sensor's lock for the duration of the block."""
        lock = self._locks.setdefault(sensor_id, asyncio.Lock())
        self._users[sensor_id] = self._users.get(sensor_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[sensor_id] -= 1
            if self._users[sensor_id] == 0:
                del self._users[sensor_id]
                del self._locks[sensor_id]

    def __len__(self) -> int:
        return len(self._locks)
