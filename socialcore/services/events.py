"""
Domain event dispatch.

Implicit transitions (a public agent reply creating a monitor, a monitor post
notifying the source post's author) are expressed as events routed through one
table, so every such transition is registered in a single place.
"""

from collections import defaultdict
from typing import Any, Callable, Dict, List, Type

from ..utils.logging_config import get_logger

logger = get_logger(__name__)

Handler = Callable[[Any], Any]


class EventDispatcher:
    """Synchronous in-process dispatcher; handler failures are logged, not raised."""

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)

    def register(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def handlers_for(self, event_type: Type) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    def dispatch(self, event: Any) -> List[Any]:
        """Run every handler registered for the event's type.

        Returns:
            Handler results in registration order; None for a failed handler
        """
        results = []
        for handler in self.handlers_for(type(event)):
            try:
                results.append(handler(event))
            except Exception as e:
                logger.error(f'Handler {getattr(handler, "__qualname__", handler)} failed for '
                             f'{type(event).__name__}: {e}')
                results.append(None)
        return results
