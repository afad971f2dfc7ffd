from __future__ import annotations

import threading
from typing import Callable

from loguru import logger

STATISTICS_UPDATED = "statistics-updated"

Listener = Callable[[str], None]


class EventNotifier:
    """Fire-and-forget signals for whatever presentation layer is attached."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: str = STATISTICS_UPDATED) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event listener failed for {}", event)
