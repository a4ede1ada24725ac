from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager


class EmployeeLockRegistry:
    """Keyed mutexes serializing read-modify-write work per employee."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, employee_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(employee_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[employee_id] = lock
            return lock

    @contextmanager
    def hold(self, employee_id: str) -> Iterator[None]:
        lock = self._lock_for(str(employee_id))
        with lock:
            yield


_default_registry = EmployeeLockRegistry()


def get_lock_registry() -> EmployeeLockRegistry:
    return _default_registry
