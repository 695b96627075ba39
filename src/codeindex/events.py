"""
Minimal typed event plumbing.

Listeners subscribe to an EventEmitter and receive a Disposable that
removes them again.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Disposable:
    """Handle that runs a teardown callback at most once."""

    def __init__(self, on_dispose: Callable[[], None] | None = None) -> None:
        self._on_dispose = on_dispose
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose()
            self._on_dispose = None


class EventEmitter(Generic[T]):
    """
    Synchronous event emitter.

    Listeners are called in subscription order. A listener that raises is
    logged and does not stop delivery to the remaining listeners.
    """

    def __init__(self, name: str = "event") -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def event(self, listener: Callable[[T], None]) -> Disposable:
        """Subscribe a listener."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return Disposable(remove)

    __call__ = event

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def fire(self, value: T) -> None:
        """Deliver a value to every current listener."""
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                logger.error(
                    "Event listener failed",
                    emitter=self.name,
                    error=str(e),
                    exc_info=True,
                )

    def dispose(self) -> None:
        self._listeners.clear()
