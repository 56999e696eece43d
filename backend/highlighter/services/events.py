"""Observable hooks for UI-directed side effects."""
import asyncio
import enum
import inspect
import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class HighlighterEvent(str, enum.Enum):
    """Events the presentation layer can react to."""
    STREAM_FINISHED = "stream_finished"
    NAVIGATE = "navigate"
    DELETE_FAILED = "delete_failed"
    NOTIFICATION = "notification"


class EventBus:
    """Fan-out of highlighter events to subscribed handlers."""

    def __init__(self):
        self._handlers: Dict[HighlighterEvent, List[Callable]] = {}

    def subscribe(self, event: HighlighterEvent, handler: Callable) -> Callable[[], None]:
        """
        Register a handler for an event.

        Handlers receive the event payload as keyword arguments and may be
        plain functions or coroutine functions.

        Returns:
            A function that removes the handler again
        """
        self._handlers.setdefault(event, []).append(handler)

        def unsubscribe():
            handlers = self._handlers.get(event, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def emit(self, event: HighlighterEvent, **payload: Any):
        """Notify handlers. A failing handler never affects the emitter."""
        logger.debug(f"Event {event.value}: {payload}")
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(**payload)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception:
                logger.exception(f"Handler for {event.value} failed")
