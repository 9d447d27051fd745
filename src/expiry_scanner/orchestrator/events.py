from __future__ import annotations

import threading
from typing import Callable, Generic, List, TypeVar

from ..logging import get_logger

LOG = get_logger("orchestrator-events")

T = TypeVar("T")


class EventChannel(Generic[T]):
    """Explicit listener registration for one kind of event."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register ``listener``; the returned callable unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, value: T) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(value)
            except Exception as exc:
                LOG.warning(f"Listener on '{self.name}' failed: {exc}")

    def __len__(self) -> int:
        return len(self._listeners)
