"""Subscription supervisor: lifecycle and health of realtime channels.

State machine per topic::

    connecting ──► subscribed ──► error ──► connecting (recover)
         │                          ▲
         └──────────────────────────┘
    any ──► closed (teardown)

Entering ``error`` is logged, metered and published, but the supervisor does
not retry on its own.  Recovery comes from the transport's own retry (it may
report ``connecting``/``subscribed`` again on the same channel) or from
:meth:`SubscriptionSupervisor.recover`, which the network monitor calls on
reconnect.

Every event received on a live channel goes to the message router together
with the group the user is looking at *right now*.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

from chatsync.core.interfaces import RealtimeSource
from chatsync.core.interfaces import Subscription
from chatsync.errors import SubscriptionError
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.metrics import subscription_errors_total
from chatsync.models import RemoteEvent
from chatsync.models import SubscriptionHandle
from chatsync.models import SubscriptionState
from chatsync.models import now_ms
from chatsync.sync.router import MessageRouter

logger = logging.getLogger(__name__)

_ALLOWED = {
    SubscriptionState.CONNECTING: {SubscriptionState.SUBSCRIBED, SubscriptionState.ERROR, SubscriptionState.CLOSED},
    SubscriptionState.SUBSCRIBED: {SubscriptionState.ERROR, SubscriptionState.CLOSED},
    SubscriptionState.ERROR: {SubscriptionState.CONNECTING, SubscriptionState.CLOSED},
    SubscriptionState.CLOSED: set(),
}


class SubscriptionSupervisor:
    """One :class:`SubscriptionHandle` per watched topic."""

    def __init__(
        self,
        source: RealtimeSource,
        router: MessageRouter,
        focused_group: Callable[[], Optional[str]],
        *,
        event_bus: Optional[EventBus] = None,
    ):
        self._source = source
        self._router = router
        self._focused_group = focused_group
        self._event_bus = event_bus

        self._handles: Dict[str, SubscriptionHandle] = {}
        self._channels: Dict[str, Subscription] = {}
        # Bumped whenever a channel is (re)opened or closed; callbacks carry
        # the generation they were created for and stale ones are ignored.
        self._generation: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def watch(self, topic: str) -> SubscriptionHandle:
        """Open (or reopen after close) the channel for *topic*."""
        handle = self._handles.get(topic)
        if handle is not None and handle.state != SubscriptionState.CLOSED:
            return handle

        handle = SubscriptionHandle(topic=topic)
        self._handles[topic] = handle
        await self._open(topic)
        return handle

    async def recover(self) -> List[str]:
        """Re-create every channel currently in ``error``."""
        recovered = []
        for topic, handle in list(self._handles.items()):
            if handle.state != SubscriptionState.ERROR:
                continue
            await self._close_channel(topic)
            handle.attempts += 1
            self._transition(topic, SubscriptionState.CONNECTING)
            await self._open(topic)
            recovered.append(topic)
        if recovered:
            logger.info("Re-subscribed %d errored channel(s): %s", len(recovered), ", ".join(recovered))
        return recovered

    async def close(self, topic: str) -> None:
        if topic not in self._handles:
            return
        self._transition(topic, SubscriptionState.CLOSED)
        self._generation[topic] = self._generation.get(topic, 0) + 1
        await self._close_channel(topic)

    async def close_all(self) -> None:
        for topic in list(self._handles):
            await self.close(topic)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def handle(self, topic: str) -> Optional[SubscriptionHandle]:
        return self._handles.get(topic)

    def health(self) -> Dict[str, Any]:
        live = [h for h in self._handles.values() if h.state != SubscriptionState.CLOSED]
        return {
            "healthy": all(h.state == SubscriptionState.SUBSCRIBED for h in live),
            "subscriptions": {topic: h.model_dump(mode="json") for topic, h in self._handles.items()},
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open(self, topic: str) -> None:
        generation = self._generation.get(topic, 0) + 1
        self._generation[topic] = generation

        def on_event(event: RemoteEvent) -> None:
            self._on_event(topic, generation, event)

        def on_status(state: SubscriptionState, error: Optional[str] = None) -> None:
            if self._generation.get(topic) == generation:
                self._transition(topic, SubscriptionState(state), error)

        try:
            channel = await self._source.subscribe(topic, on_event, on_status)
        except Exception as exc:  # noqa: BLE001 – reported as channel error
            self._transition(topic, SubscriptionState.ERROR, str(exc))
            return

        if self._generation.get(topic) != generation:
            # Closed while we were connecting.
            await channel.close()
            return
        self._channels[topic] = channel

    async def _close_channel(self, topic: str) -> None:
        channel = self._channels.pop(topic, None)
        if channel is None:
            return
        try:
            await channel.close()
        except Exception as exc:  # noqa: BLE001 – teardown is best effort
            logger.warning("Closing channel %s failed: %s", topic, exc)

    def _on_event(self, topic: str, generation: int, event: RemoteEvent) -> None:
        handle = self._handles.get(topic)
        if self._generation.get(topic) != generation or handle is None or handle.state == SubscriptionState.CLOSED:
            logger.debug("Ignoring event on closed/stale channel %s", topic)
            return
        self._router.route(event, self._focused_group())

    def _transition(self, topic: str, new_state: SubscriptionState, error: Optional[str] = None) -> None:
        handle = self._handles[topic]
        if new_state == handle.state:
            return
        if new_state not in _ALLOWED[handle.state]:
            logger.warning("Ignoring invalid transition %s -> %s for %s", handle.state.value, new_state.value, topic)
            return

        handle.state = new_state
        handle.updated_at = now_ms()
        if new_state == SubscriptionState.ERROR:
            handle.last_error = error or "unknown"
            subscription_errors_total.inc()
            logger.warning("%s", SubscriptionError(topic, handle.last_error))
        elif new_state == SubscriptionState.SUBSCRIBED:
            handle.last_error = None
            logger.info("Subscribed to %s", topic)

        if self._event_bus is not None:
            self._event_bus.publish_nowait(
                EventType.SUBSCRIPTION_STATUS,
                {"topic": topic, "state": new_state.value, "error": handle.last_error},
            )
