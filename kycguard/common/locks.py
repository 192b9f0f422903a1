"""Per-key asyncio locks that are dropped once nobody holds or awaits them."""

import asyncio
import weakref


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key.

    Locks are held weakly: every holder and waiter keeps a reference while
    it needs the lock, so a key's entry disappears once its last user is
    done and the map stays proportional to in-flight work.
    """

    def __init__(self):
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def __call__(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
