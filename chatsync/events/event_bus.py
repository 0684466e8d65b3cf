"""Event bus for sync-layer notifications.

The UI (or any other observer) subscribes here to learn about conditions it
must surface: terminal write failures, orphaned dependent writes, degraded
realtime health and connectivity changes.
"""

import asyncio
import logging
from enum import Enum
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Set

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Standardized event types published by the sync layer."""

    # Write lifecycle
    WRITE_CONFIRMED = "write_confirmed"
    TERMINAL_WRITE_FAILURE = "terminal_write_failure"
    ORPHAN_PREVENTED = "orphan_prevented"

    # Realtime & connectivity
    SUBSCRIPTION_STATUS = "subscription_status"
    CONNECTIVITY_CHANGED = "connectivity_changed"

    # View
    GROUP_FLUSHED = "group_flushed"


Handler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventBus:
    """Publish/subscribe hub.  Each :class:`~chatsync.sync.engine.SyncEngine`
    owns its own instance so independent engines never share subscribers."""

    def __init__(self):
        """Initialize an empty event bus."""
        self._subscribers: Dict[EventType, Set[Handler]] = {}
        # Strong references to scheduled publishes so they are not collected
        # mid-flight.
        self._pending: Set[asyncio.Task] = set()

    async def publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Publish an event to all subscribers.

        Args:
            event_type: The type of event being published
            data: Event payload data
        """
        handlers = self._subscribers.get(event_type)
        if not handlers:
            return

        logger.debug("Publishing event %s with data: %s", event_type, data)

        # Fan-out concurrently so a slow subscriber cannot block the publish
        # call.  return_exceptions=True keeps every callback running; raised
        # errors are logged individually.
        results = await asyncio.gather(*(callback(data) for callback in list(handlers)), return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                logger.error("Error in event handler for %s: %s", event_type, result)

    def publish_nowait(self, event_type: EventType, data: Dict[str, Any]) -> None:
        """Schedule :meth:`publish` from synchronous code on the running loop."""
        if not self._subscribers.get(event_type):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; dropping %s notification", event_type)
            return
        task = loop.create_task(self.publish(event_type, data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for publishes scheduled via :meth:`publish_nowait`."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def subscribe(self, event_type: EventType, callback: Handler) -> None:
        """Subscribe to an event type.

        Args:
            event_type: The event type to subscribe to
            callback: Async callback function to handle the event
        """
        self._subscribers.setdefault(event_type, set()).add(callback)
        logger.debug("Added subscriber for event %s", event_type)

    def unsubscribe(self, event_type: EventType, callback: Handler) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: The event type to unsubscribe from
            callback: The callback function to remove
        """
        if event_type in self._subscribers:
            self._subscribers[event_type].discard(callback)
            logger.debug("Removed subscriber for event %s", event_type)

            # Clean up empty subscriber sets
            if not self._subscribers[event_type]:
                del self._subscribers[event_type]
