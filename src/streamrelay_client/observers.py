"""Minimal observer registry."""

import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class ObserverRegistry:
    """Ordered set of callbacks with explicit subscribe/unsubscribe.

    A failing observer is logged and does not stop the others from being
    notified.
    """

    def __init__(self, name: str = "observers"):
        self.name = name
        self._observers: list[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Callable[[], bool]:
        """Register a callback; returns a function that unsubscribes it."""
        self._observers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[..., Any]) -> bool:
        try:
            self._observers.remove(callback)
        except ValueError:
            return False
        return True

    def notify(self, *args: Any) -> None:
        # Iterate a snapshot so observers may unsubscribe while being notified
        for callback in list(self._observers):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Observer of {self.name} failed")

    def clear(self) -> None:
        self._observers.clear()

    def __len__(self) -> int:
        return len(self._observers)
