"""
Continuously updated wallet state channels.

An ObservableValue holds the latest value of one piece of wallet state and
notifies subscribers synchronously, in registration order, on every update.
New subscribers immediately receive the current value.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")

Subscriber = Callable[[T], None]
Unsubscribe = Callable[[], None]


class ObservableValue(Generic[T]):
    def __init__(self, initial: T, name: str = "value"):
        self._value = initial
        self.name = name
        self._subscribers: list[Subscriber[T]] = []

    @property
    def value(self) -> T:
        return self._value

    def subscribe(self, callback: Subscriber[T]) -> Unsubscribe:
        """Register a subscriber; returns a callable that unregisters it."""
        self._subscribers.append(callback)
        self._notify(callback, self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> None:
        self._value = value
        # Copy so subscribers may unsubscribe while being notified
        for callback in list(self._subscribers):
            self._notify(callback, value)

    def _notify(self, callback: Subscriber[T], value: T) -> None:
        try:
            callback(value)
        except Exception as e:
            logger.exception(f"Subscriber of {self.name} raised: {e}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
