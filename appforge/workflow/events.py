"""
Typed event bus shared by the state machine and the retry engine.

Listeners subscribe to a single event type or to every event. A listener
that raises is logged and skipped; delivery continues to the remaining
listeners and the emitter never sees the exception.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

Listener = Callable[[Any], None]


class EventBus(Generic[E]):
    """Synchronous observer registry keyed by an event-type enum."""

    def __init__(self):
        self._listeners: Dict[E, List[Listener]] = {}
        self._global_listeners: List[Listener] = []

    def on(self, event_type: E, listener: Listener) -> Callable[[], None]:
        """Subscribe to one event type; returns an unsubscribe callable."""
        self._listeners.setdefault(event_type, []).append(listener)
        return lambda: self.off(event_type, listener)

    def off(self, event_type: E, listener: Listener) -> None:
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def subscribe_all(self, listener: Listener) -> Callable[[], None]:
        """Subscribe to every event type; returns an unsubscribe callable."""
        self._global_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._global_listeners:
                self._global_listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: E, event: Any) -> None:
        # Copy so listeners may unsubscribe while being notified
        targets = list(self._listeners.get(event_type, [])) + list(self._global_listeners)
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Event listener failed for %s", getattr(event_type, "value", event_type)
                )
