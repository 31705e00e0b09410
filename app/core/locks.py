"""
In-process single-writer locks keyed by string.

Endpoints are plain ``def`` functions, so FastAPI runs them on a threadpool
and two requests for the same cart, guest id or order can race.
A ``KeyedLock`` hands out one ``threading.Lock`` per key and forgets it as
soon as nobody holds or waits for it.

Usage:

    from app.core.locks import cart_locks

    with cart_locks.hold(f"guest:{guest_id}"):
        ...
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

from app.core.config import get_settings
from app.core.errors import Conflict

logger = logging.getLogger(__name__)


class KeyedLock:
    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        # key -> [lock, number of holders + waiters]
        self._entries: dict[str, list] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    @contextmanager
    def hold(self, key: str, timeout: float | None = None) -> Iterator[None]:
        """
        Hold the lock for ``key`` for the duration of the block.

        Raises:
            Conflict: if the lock is not acquired within ``timeout`` seconds
            (defaults to LOCK_TIMEOUT_SECONDS).
        """
        if timeout is None:
            timeout = get_settings().LOCK_TIMEOUT_SECONDS

        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning("Timed out waiting for %s lock %s", self.name, key)
                raise Conflict(f"Another request is updating {key}, retry shortly")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


# Per identity ("user:<id>" / "guest:<session id>"): cart edits, guest merges,
# coupon application and checkout of that cart.
cart_locks = KeyedLock("cart")

# Per order id: status changes, cancellations, returns.
order_locks = KeyedLock("order")
