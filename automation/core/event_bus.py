"""In-process publish/subscribe bus for CRM domain and runner events"""
import logging
from typing import Any, Awaitable, Callable, Dict, List

from shared.enums import EventName

logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def _event_key(event_name: str) -> str:
    return event_name.value if isinstance(event_name, EventName) else event_name


class EventBus:
    """Routes published events to the handlers subscribed to that name.

    Handlers run sequentially in subscription order. A failing handler is
    logged and never affects the publisher or the remaining handlers.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def subscribe(self, event_name: str, handler: EventHandler) -> None:
        """Register a handler for one event name"""
        self._handlers.setdefault(_event_key(event_name), []).append(handler)

    def handlers_for(self, event_name: str) -> List[EventHandler]:
        return list(self._handlers.get(_event_key(event_name), []))

    def subscribed_events(self) -> List[str]:
        return [name for name, handlers in self._handlers.items() if handlers]

    async def publish(self, event_name: str, payload: Dict[str, Any]) -> None:
        """Deliver an event to every subscribed handler"""
        key = _event_key(event_name)
        handlers = self._handlers.get(key, [])
        logger.debug(f"Publishing {key} to {len(handlers)} handler(s)")

        for handler in list(handlers):
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"Handler {getattr(handler, '__name__', handler)} "
                             f"failed for event {key}: {e}")
