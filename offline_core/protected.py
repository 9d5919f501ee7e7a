"""Mutex-guarded value that broadcasts every committed write to its listeners."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T], None]


class Protected(Generic[T]):
    """Hold a value behind a lock and notify listeners after each write.

    Listeners run synchronously while the lock is held, so they observe
    writes in the exact order they were committed.  Values handed to
    listeners should be immutable (tuples, frozen dataclasses).
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.RLock()
        self._listeners: List[Listener] = []

    def read(self) -> T:
        with self._lock:
            return self._value

    def write(self, value: T) -> T:
        with self._lock:
            self._value = value
            self._notify(value)
            return value

    def update(self, mutator: Callable[[T], T]) -> T:
        """Apply ``mutator`` to the current value as one read-modify-write step."""

        with self._lock:
            self._value = mutator(self._value)
            self._notify(self._value)
            return self._value

    def subscribe(self, listener: Listener, *, replay: bool = True) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it.

        With ``replay`` the listener immediately receives the current value.
        """

        if not callable(listener):
            raise TypeError("listener must be callable")
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
            if replay:
                self._call(listener, self._value)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _notify(self, value: T) -> None:
        for listener in list(self._listeners):
            self._call(listener, value)

    @staticmethod
    def _call(listener: Listener, value: T) -> None:
        try:
            listener(value)
        except Exception:
            logger.exception("Protected value listener raised an exception")


__all__ = ["Protected"]
