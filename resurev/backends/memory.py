"""In-process key-value backend, also used as the test double."""
from __future__ import annotations

import threading

from resurev.backends.base import KeyValueBackend
from resurev.errors import BackendUnavailable


class MemoryKV(KeyValueBackend):
    """Thread-safe dict-backed store.

    ``fail_set``/``fail_delete`` hold key prefixes whose writes report
    failure; ``offline`` makes every call raise BackendUnavailable.
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()
        self.fail_set: set[str] = set()
        self.fail_delete: set[str] = set()
        self.offline = False

    def _check(self) -> None:
        if self.offline:
            raise BackendUnavailable("memory store offline")

    @staticmethod
    def _matches(key: str, prefixes: set[str]) -> bool:
        return any(key.startswith(p) for p in prefixes)

    def get(self, key: str) -> str | None:
        self._check()
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._check()
        if self._matches(key, self.fail_set):
            return False
        with self._lock:
            self._data[key] = value
        return True

    def delete(self, key: str) -> bool:
        self._check()
        if self._matches(key, self.fail_delete):
            return False
        with self._lock:
            self._data.pop(key, None)
        return True

    def list(self, prefix: str, with_values: bool = False):
        self._check()
        with self._lock:
            items = sorted((k, v) for k, v in self._data.items() if k.startswith(prefix))
        if with_values:
            return items
        return [k for k, _ in items]

    def ping(self) -> bool:
        return not self.offline
