"""
Run guard for periodic jobs.

A `JobLock` lets exactly one run of a job proceed at a time. A run that finds
the lock taken is expected to skip, not wait: scheduled sweeps are idempotent
and the next tick picks up whatever was missed.
"""

import threading
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional

from core.models import utcnow


class JobLock:
    """Non-blocking, non-reentrant run lock"""

    def __init__(self, name: str = "job"):
        self.name = name
        self._lock = threading.Lock()
        self._last_run: Optional[datetime] = None

    def try_lock(self) -> bool:
        """Acquire the lock if free; returns False when a run is in progress"""
        acquired = self._lock.acquire(blocking=False)
        if acquired:
            self._last_run = utcnow()
        return acquired

    def unlock(self) -> None:
        if self._lock.locked():
            self._lock.release()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def last_run(self) -> Optional[datetime]:
        return self._last_run

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[bool]:
        """
        Async context manager yielding whether the lock was acquired.

            async with lock.hold() as acquired:
                if not acquired:
                    return
        """
        acquired = self.try_lock()
        try:
            yield acquired
        finally:
            if acquired:
                self.unlock()
