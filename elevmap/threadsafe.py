"""Lock-guarded container for data shared between threads."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Generic, Iterator, TypeVar

T = TypeVar("T")


class ThreadSafeDataWrapper(Generic[T]):
    """Serialises reads and writes of a value shared between threads."""

    def __init__(self, data: T) -> None:
        self._data = copy.deepcopy(data)
        self._lock = threading.Lock()

    def set(self, data: T) -> None:
        """Replace the stored value with a copy of ``data``."""
        data = copy.deepcopy(data)
        with self._lock:
            self._data = data

    def get(self) -> T:
        """Return a copy of the stored value."""
        with self._lock:
            return copy.deepcopy(self._data)

    @contextmanager
    def write(self) -> Iterator[T]:
        """Yield the stored value for in-place changes while holding the lock."""
        with self._lock:
            yield self._data

    def __copy__(self) -> "ThreadSafeDataWrapper[T]":
        return type(self)(self.get())