from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLocks:
    """
    One exclusive lock per key (order id, doctor id ...).

    Serializes writers inside this process. Row locks (SELECT ... FOR UPDATE)
    and the order version column cover writers in other processes.
    Entries are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, number of holders + waiters]
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        lock: threading.Lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0 and self._locks.get(key) is entry:
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)


order_locks = KeyedLocks()
doctor_locks = KeyedLocks()
