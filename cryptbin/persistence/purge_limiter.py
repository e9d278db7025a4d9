# cryptbin/persistence/purge_limiter.py
"""
Global purge throttle.

The config store holds the earliest time the next sweep may start. The first
caller past that time moves it forward and sweeps; concurrent callers that
slip through only repeat an idempotent purge.
"""

import logging
import time

from cryptbin.storage.base import NAMESPACE_PURGE_LIMITER, DataStore

logger = logging.getLogger(__name__)


class PurgeLimiter:
    def __init__(self, store: DataStore, limit_seconds: int = 300):
        self._store = store
        self.limit_seconds = limit_seconds

    def next_purge_at(self) -> int:
        """Time the next sweep becomes allowed, 0 if never scheduled."""
        value = self._store.get_value(NAMESPACE_PURGE_LIMITER)
        return int(value) if value.isdigit() else 0

    def can_purge(self) -> bool:
        """
        Check whether a sweep may run now and, if so, schedule the next one.

        A limit below 1 second disables throttling.
        """
        if self.limit_seconds < 1:
            return True

        now = int(time.time())
        if now < self.next_purge_at():
            return False

        self._store.set_value(str(now + self.limit_seconds), NAMESPACE_PURGE_LIMITER)
        logger.debug(f"Purge allowed, next one in {self.limit_seconds}s")
        return True
