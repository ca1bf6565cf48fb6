import threading
from collections.abc import Callable, MutableMapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Writers that must not interleave (capacity checks, first-writer-wins
    inserts) go through ``insert_if_absent`` / ``update``, which run under one
    lock. Plain ``put`` is last-writer-wins.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = threading.RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def scan(self, prefix: str) -> list[V]:
        with self._lock:
            return [
                v
                for k, v in self._store.items()
                if isinstance(k, str) and k.startswith(prefix)
            ]

    def insert_if_absent(self, key: K, value: V) -> bool:
        """
        Store ``value`` only if ``key`` is unused.
        Returns True if this call wrote it, False if another writer won.
        """
        with self._lock:
            if key in self._store:
                return False
            self._store[key] = value
            return True

    def locked(self) -> threading.RLock:
        """Hold the write lock across several calls."""
        return self._lock

    def update(self, key: K, fn: Callable[[V], V]) -> V | None:
        """
        Atomic read-modify-write. ``fn`` receives the current value and returns
        the replacement; exceptions from ``fn`` leave the stored value untouched.
        Returns the new value, or None if ``key`` is missing.
        """
        with self._lock:
            value = self._store.get(key)
            if value is None:
                return None
            new_value = fn(value)
            self._store[key] = new_value
            return new_value
