"""
Minimal observable store with refcounted start/stop.

This is the store protocol mirrors expose to host code:

    unsubscribe = store.subscribe(callback)
    store.set(value)
    store.update(fn)

A store may carry a ``start`` function. It runs when the subscriber count
goes from zero to one and returns a ``stop`` function, which runs when the
count drops back to zero. Mirrors open their backend listener in ``start``
and close it in ``stop``, so exactly one listener is active however many
consumers attach.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]
Unsubscriber = Callable[[], None]
StartNotifier = Callable[[Callable[[T], None]], Callable[[], None] | None]


class Readable(Protocol[T]):
    def subscribe(self, callback: Subscriber[T]) -> Unsubscriber: ...


def _changed(old: Any, new: Any) -> bool:
    # Containers may have been mutated in place, so always treat them as changed
    if isinstance(new, (dict, list, set)) or hasattr(new, "__dict__"):
        return True
    return old is not new and old != new


class Writable(Generic[T]):
    """A value holder that notifies subscribers on change."""

    def __init__(self, value: T, start: StartNotifier[T] | None = None):
        self._value = value
        self._start = start
        self._stop: Callable[[], None] | None = None
        self._subscribers: dict[int, Subscriber[T]] = {}
        self._next_token = 0
        self._starting = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def get(self) -> T:
        """Current value, without subscribing."""
        return self._value

    def set(self, value: T) -> None:
        if not _changed(self._value, value):
            return
        self._value = value
        # The subscriber being added receives the value once start returns
        if self._starting:
            return
        # Snapshot the subscriber list; callbacks may unsubscribe
        for callback in list(self._subscribers.values()):
            try:
                callback(value)
            except Exception:
                logger.exception("Store subscriber raised")

    def update(self, fn: Callable[[T], T]) -> None:
        self.set(fn(self._value))

    def subscribe(self, callback: Subscriber[T]) -> Unsubscriber:
        """Register a subscriber and call it immediately with the current value.

        Returns:
            An idempotent unsubscribe function
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        if len(self._subscribers) == 1 and self._start is not None:
            self._starting = True
            try:
                self._stop = self._start(self.set) or (lambda: None)
            finally:
                self._starting = False

        if token in self._subscribers:
            callback(self._value)

        def unsubscribe() -> None:
            if self._subscribers.pop(token, None) is None:
                return
            if not self._subscribers and self._stop is not None:
                stop, self._stop = self._stop, None
                stop()

        return unsubscribe


def get(store: Readable[T]) -> T:
    """Read the current value of any store by subscribing once."""
    values: list[T] = []
    unsubscribe = store.subscribe(values.append)
    unsubscribe()
    return values[0]
