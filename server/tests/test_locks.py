"""Tests for LockRegistry - thread-safe lazy lock cache.

Covers:
- Lazy creation (starts at 0)
- Cache hit (same lock for same resource)
- Separate locks for separate resources
- hold(): acquire in order, release on exit and on error
- Weak entries: locks vanish once unreferenced, never while held
- User lock keys
- Thread safety (concurrent get_lock calls)
- Mutual exclusion on one resource
"""
import sys
import os
import threading
import time
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from modelhub.hierarchy import org_ref, project_ref, element_ref
from modelhub.locks import LockRegistry, user_key


def _make_registry():
    return LockRegistry()


class TestLazyCreation:

    def test_starts_empty(self):
        assert _make_registry().lock_count == 0

    def test_first_get_creates_lock(self):
        reg = _make_registry()
        lock = reg.get_lock(org_ref("acme"))
        assert lock is not None
        assert reg.lock_count == 1


class TestCacheHit:

    def test_same_resource_returns_same_lock(self):
        reg = _make_registry()
        lock = reg.get_lock(org_ref("acme"))
        assert reg.get_lock(org_ref("acme")) is lock
        assert reg.lock_count == 1

    def test_different_resources_get_separate_locks(self):
        reg = _make_registry()
        a = reg.get_lock(org_ref("acme"))
        b = reg.get_lock(project_ref("acme", "rover"))
        assert a is not b
        assert reg.lock_count == 2


class TestHold:

    def test_hold_acquires_chain_and_releases(self):
        reg = _make_registry()
        ref = element_ref("acme", "rover", "wheel")
        with reg.hold(*ref.lineage()):
            assert reg.lock_count == 3
        # Released: another thread can take every lock immediately
        results = []

        def worker():
            for r in ref.lineage():
                lock = reg.get_lock(r)
                results.append(lock.acquire(timeout=1))
                lock.release()

        t = threading.Thread(target=worker)
        t.start()
        t.join()
        assert results == [True, True, True]

    def test_hold_releases_on_error(self):
        reg = _make_registry()
        ref = org_ref("acme")
        with pytest.raises(RuntimeError):
            with reg.hold(ref):
                raise RuntimeError("boom")
        acquired = []
        t = threading.Thread(target=lambda: acquired.append(reg.get_lock(ref).acquire(timeout=1)))
        t.start()
        t.join()
        assert acquired == [True]

    def test_hold_is_reentrant(self):
        reg = _make_registry()
        ref = org_ref("acme")
        with reg.hold(ref):
            with reg.hold(ref):
                pass  # should not deadlock

    def test_hold_serializes_one_resource(self):
        reg = _make_registry()
        ref = org_ref("acme")
        inside = []
        overlaps = []

        def worker():
            with reg.hold(ref):
                if inside:
                    overlaps.append(True)
                inside.append(1)
                time.sleep(0.01)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert overlaps == []


class TestWeakEntries:

    def test_unreferenced_lock_is_forgotten(self):
        reg = _make_registry()
        with reg.hold(org_ref("acme")):
            assert reg.lock_count == 1
        assert reg.lock_count == 0

    def test_held_lock_is_shared_after_resource_recreated(self):
        # A lock held by one thread is the lock every other caller gets,
        # even if the resource is deleted and created again meanwhile
        reg = _make_registry()
        ref = org_ref("acme")
        entered = threading.Event()
        leave = threading.Event()

        def holder():
            with reg.hold(ref):
                entered.set()
                leave.wait(timeout=5)

        t = threading.Thread(target=holder)
        t.start()
        try:
            assert entered.wait(timeout=5)
            lock = reg.get_lock(org_ref("acme"))
            assert lock.acquire(timeout=0.2) is False
        finally:
            leave.set()
            t.join()
        assert lock.acquire(timeout=1) is True
        lock.release()


class TestUserKeys:

    def test_user_key_format(self):
        assert user_key("alice") == "user:alice"

    def test_user_key_never_collides_with_resources(self):
        reg = _make_registry()
        a = reg.get_lock(user_key("acme"))
        b = reg.get_lock(org_ref("acme"))
        assert a is not b

    def test_hold_mixes_users_and_resources(self):
        reg = _make_registry()
        ref = project_ref("acme", "rover")
        with reg.hold(user_key("alice"), *ref.lineage()):
            assert reg.lock_count == 3


class TestThreadSafety:

    def test_concurrent_get_lock_creates_one(self):
        reg = _make_registry()
        ref = project_ref("acme", "rover")
        locks = []
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            locks.append(reg.get_lock(ref))

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert reg.lock_count == 1
        assert all(lock is locks[0] for lock in locks)
