from __future__ import annotations

from collections import defaultdict
import logging
from typing import Any, Callable, Protocol


logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict[str, Any]], None]


class EventBus(Protocol):
    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        ...


class InProcessEventBus:
    """Fire-and-forget change notifications delivered to in-process subscribers.

    Delivery is synchronous and unacknowledged: a failing handler is logged and
    the remaining handlers still run.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers[event_name].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        # Snapshot handlers so subscribe/unsubscribe during delivery does not skip anyone.
        for handler in list(self._handlers.get(event_name, ())):
            try:
                handler(event_name, payload)
            except Exception as exc:  # noqa: BLE001 - subscribers must not break writers
                logger.warning("event_handler_failed event=%s handler=%r", event_name, handler, exc_info=exc)


_bus = InProcessEventBus()


def get_event_bus() -> InProcessEventBus:
    return _bus
