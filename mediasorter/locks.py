#!/usr/bin/env python3
"""
Per-file-hash locks

Moves and rollbacks on the same hash run one at a time; different hashes
never block each other. Locks are created on first use and dropped when the
last holder releases them.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

from mediasorter.errors import ConcurrencyError

logger = logging.getLogger(__name__)


class KeyedLock:
    """A lock per key, with a timeout on acquisition"""

    def __init__(self, default_timeout: float = 30.0):
        self.default_timeout = default_timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._users: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        """
        Hold the lock for key for the duration of the with-block

        Raises:
            ConcurrencyError: if the lock is not acquired within timeout seconds
        """
        timeout = self.default_timeout if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning(f"Lock contention on {key} - gave up after {timeout}s")
                raise ConcurrencyError(key, timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def is_locked(self, key: str) -> bool:
        with self._guard:
            lock = self._locks.get(key)
        return lock is not None and lock.locked()
