"""In-process counters for auth route metrics."""

from __future__ import annotations

import logging
import threading
from typing import Protocol

_LOG = logging.getLogger("portal-auth.instrumentation")


class Counter(Protocol):
    def add(self, value: int = 1) -> None: ...


class _Counter:
    def __init__(self, name: str, lock: threading.Lock) -> None:
        self.name = name
        self.value = 0
        self._lock = lock

    def add(self, value: int = 1) -> None:
        with self._lock:
            self.value += value
        _LOG.debug("counter %s += %d", self.name, value)


class InstrumentationService:
    """Named monotonic counters, created on first use."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, _Counter] = {}

    def counter(self, name: str) -> Counter:
        with self._lock:
            counter = self._counters.get(name)
            if counter is None:
                counter = self._counters[name] = _Counter(name, self._lock)
        return counter

    def value(self, name: str) -> int:
        counter = self._counters.get(name)
        return counter.value if counter else 0

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {name: c.value for name, c in self._counters.items()}
