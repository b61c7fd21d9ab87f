# core/locks.py
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Iterator, List


class KeyedLocks:
    """
    One re-entrant lock per resource key (note commitment, pool id, tx hash).
    Disjoint keys never contend; there is no global lock held across a mutation.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def _get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = self._locks[key] = threading.RLock()
            return lk

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lk = self._get(key)
        with lk:
            yield

    @contextmanager
    def hold_many(self, keys: Iterable[Hashable]) -> Iterator[None]:
        # sorted acquisition order keeps multi-key holders deadlock-free
        ordered: List[Hashable] = sorted(set(keys), key=str)
        acquired = []
        try:
            for k in ordered:
                lk = self._get(k)
                lk.acquire()
                acquired.append(lk)
            yield
        finally:
            for lk in reversed(acquired):
                lk.release()


__all__ = ["KeyedLocks"]
