"""ModelHub - Per-Resource Lock Registry

One lock per resource, created lazily. Mutations of a resource's membership
hold its lock; mutations of different resources never contend.

A user has a lock too. Anything that writes a username into a store, and
deleting that user, hold it.

Lock order is always user, then child, then parent. hold() takes keys in
the order given; the permission engine passes the user key first and a
lineage child first.

Entries are weak: a lock stays registered while some thread holds it or is
waiting for it, and disappears once nobody references it. Deleting a
resource therefore never needs to forget its lock explicitly.
"""

import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Union

from .hierarchy import ResourceRef
from .logging_config import get_logger

logger = get_logger(__name__)

LockTarget = Union[ResourceRef, str]


def user_key(username: str) -> str:
    """Lock key for a user: 'user:<name>'."""
    return f"user:{username}"


def _key(target: LockTarget) -> str:
    return target if isinstance(target, str) else target.lock_key


class LockRegistry:
    """Thread-safe lazy cache of locks, keyed by ResourceRef.lock_key or user_key()."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = (
            weakref.WeakValueDictionary()
        )
        self._registry_lock = threading.Lock()

    @property
    def lock_count(self) -> int:
        """Locks currently referenced by some caller."""
        return len(self._locks)

    def get_lock(self, target: LockTarget) -> threading.RLock:
        key = _key(target)
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
                logger.debug("Created lock for %s", key)
            return lock

    @contextmanager
    def hold(self, *targets: LockTarget) -> Iterator[None]:
        """Acquire the locks of `targets` in order, release in reverse."""
        acquired = []
        try:
            for target in targets:
                lock = self.get_lock(target)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
