"""In-process publish/subscribe channel for core-exposed events.

One channel per EventKind. subscribe() returns the matching unsubscribe
callable so listeners are never leaked. Delivery is synchronous and
fire-and-forget: a failing handler is logged and does not affect the
publisher or the other handlers.
"""

import logging
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


class EventKind(str, Enum):
    TRANSCRIPT = "transcript:update"
    SUGGESTION = "ai:suggestion"
    STATUS = "status:update"
    KEY_POINT = "context:key-point"
    SESSION_STARTED = "session:started"
    SESSION_ENDED = "session:ended"
    AUDIO_LEVEL = "audio:level"


class EventBus:
    def __init__(self):
        self._handlers: dict[EventKind, list[Handler]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind, handler: Handler) -> Callable[[], None]:
        self._handlers[kind].append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers[kind].remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def subscribe_all(self, handler: Callable[[EventKind, Any], None]) -> Callable[[], None]:
        """Subscribe one handler to every kind. handler receives (kind, payload)."""
        unsubscribers = [
            self.subscribe(kind, lambda payload, _kind=kind: handler(_kind, payload))
            for kind in EventKind
        ]

        def unsubscribe() -> None:
            for unsub in unsubscribers:
                unsub()

        return unsubscribe

    def publish(self, kind: EventKind, payload: Any = None) -> None:
        for handler in list(self._handlers[kind]):
            try:
                handler(payload)
            except Exception:
                logger.exception(f"Event handler for {kind.value} failed")
