"""In-memory implementations of the collaborator interfaces.

These doubles give tests full control over the remote store, connectivity
and time while keeping the same interfaces as the production adapters.
"""

from __future__ import annotations

import asyncio
from typing import Any
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional
from typing import Tuple

from chatsync.core.interfaces import Clock
from chatsync.core.interfaces import ConnectivityHandler
from chatsync.core.interfaces import EventCallback
from chatsync.core.interfaces import Platform
from chatsync.core.interfaces import RemoteStore
from chatsync.core.interfaces import StatusCallback
from chatsync.core.interfaces import Subscription
from chatsync.errors import RemoteStoreError
from chatsync.models import ChangeKind
from chatsync.models import Entity
from chatsync.models import RemoteEvent
from chatsync.models import SubscriptionState
from chatsync.models import now_ms
from chatsync.services.rest_store import row_to_entity

# table -> (column, referenced table)
DEFAULT_FOREIGN_KEYS = {"messages": ("chat_id", "chats")}


class _Channel(Subscription):
    def __init__(self, store: "InMemoryRemoteStore", topic: str, on_event: EventCallback, on_status: StatusCallback):
        self.store = store
        self.topic = topic
        self.on_event = on_event
        self.on_status = on_status
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.store._channels.remove(self)


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed remote store with failure injection.

    * ``fail_next(n)`` makes the next *n* mutating calls raise;
    * ``fail_always()`` simulates an outage until ``recover()``;
    * rows referencing a missing parent are rejected like a foreign key.
    """

    def __init__(self, foreign_keys: Optional[Dict[str, Tuple[str, str]]] = None):
        self.rows: Dict[str, Dict[str, Entity]] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.foreign_keys = DEFAULT_FOREIGN_KEYS if foreign_keys is None else foreign_keys

        self.subscribe_error: Optional[Exception] = None
        self.auto_subscribe = True
        self._channels: List[_Channel] = []

        self._fail_next = 0
        self._outage: Optional[Exception] = None
        self._revision = 0

    # ------------------------------------------------------------------
    # Failure injection
    # ------------------------------------------------------------------

    def fail_next(self, times: int = 1) -> None:
        self._fail_next += times

    def fail_always(self, error: Optional[Exception] = None) -> None:
        self._outage = error or RemoteStoreError("remote store unavailable", status_code=503)

    def recover(self) -> None:
        self._outage = None
        self._fail_next = 0

    async def _call(self, op: str, entity_type: str, entity_id: str) -> None:
        self.calls.append((op, entity_type, entity_id))
        # Yield like a real network round trip would.
        await asyncio.sleep(0)
        if self._outage is not None:
            raise self._outage
        if self._fail_next > 0:
            self._fail_next -= 1
            raise RemoteStoreError(f"injected failure on {op} {entity_id}", status_code=500)

    def _next_revision(self) -> int:
        self._revision = max(self._revision + 1, now_ms())
        return self._revision

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    async def create(self, entity_type: str, payload: Dict[str, Any]) -> Entity:
        entity_id = str(payload["id"])
        await self._call("create", entity_type, entity_id)

        fk = self.foreign_keys.get(entity_type)
        if fk is not None:
            column, table = fk
            parent = payload.get(column)
            if parent and str(parent) not in self.rows.get(table, {}):
                raise RemoteStoreError(f"{column}={parent} violates foreign key to {table}", code="23503")

        table_rows = self.rows.setdefault(entity_type, {})
        existing = table_rows.get(entity_id)
        row = {**(existing.payload if existing else {}), **payload}
        entity = row_to_entity(entity_type, row).model_copy(update={"revision": self._next_revision()})
        table_rows[entity_id] = entity
        return entity

    async def update(self, entity_type: str, entity_id: str, patch: Dict[str, Any]) -> Entity:
        await self._call("update", entity_type, entity_id)
        existing = self.rows.get(entity_type, {}).get(entity_id)
        if existing is None:
            raise RemoteStoreError(f"{entity_type} {entity_id} not found", status_code=404)
        entity = row_to_entity(entity_type, {**existing.payload, **patch}).model_copy(
            update={"revision": self._next_revision()}
        )
        self.rows[entity_type][entity_id] = entity
        return entity

    async def delete(self, entity_type: str, entity_id: str) -> None:
        await self._call("delete", entity_type, entity_id)
        self.rows.get(entity_type, {}).pop(entity_id, None)

    async def subscribe(self, topic: str, on_event: EventCallback, on_status: StatusCallback) -> Subscription:
        await asyncio.sleep(0)
        if self.subscribe_error is not None:
            raise self.subscribe_error
        channel = _Channel(self, topic, on_event, on_status)
        self._channels.append(channel)
        if self.auto_subscribe:
            on_status(SubscriptionState.SUBSCRIBED, None)
        return channel

    # ------------------------------------------------------------------
    # Realtime simulation
    # ------------------------------------------------------------------

    def channels(self, topic: Optional[str] = None) -> List[_Channel]:
        return [c for c in self._channels if topic is None or c.topic == topic]

    def emit(self, topic: str, entity: Entity, kind: ChangeKind = ChangeKind.INSERT) -> None:
        """Deliver a change notification to every open channel on *topic*."""
        event = RemoteEvent(topic=topic, kind=kind, entity=entity)
        for channel in self.channels(topic):
            channel.on_event(event)

    def set_status(self, topic: str, state: SubscriptionState, error: Optional[str] = None) -> None:
        for channel in self.channels(topic):
            channel.on_status(state, error)

    def get(self, entity_type: str, entity_id: str) -> Optional[Entity]:
        return self.rows.get(entity_type, {}).get(entity_id)


class FakePlatform(Platform):
    """Connectivity flag flipped by the test."""

    def __init__(self, online: bool = True):
        self._online = online
        self._handlers: List[ConnectivityHandler] = []

    def is_online(self) -> bool:
        return self._online

    def on_connectivity_change(self, handler: ConnectivityHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unregister() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unregister

    def set_online(self, online: bool) -> None:
        self._online = online
        for handler in list(self._handlers):
            handler(online)


class ManualClock(Clock):
    """Deterministic clock.

    Every requested delay is recorded in :attr:`sleeps`.  With
    ``auto_advance=True`` timers resolve immediately (time jumps forward);
    otherwise they fire only when :meth:`advance` moves time past them.
    """

    def __init__(self, auto_advance: bool = False):
        self.now = 0.0
        self.sleeps: List[float] = []
        self._auto_advance = auto_advance
        self._timers: List[Tuple[float, asyncio.Future]] = []

    async def after(self, ms: float) -> None:
        self.sleeps.append(ms)
        if self._auto_advance or ms <= 0:
            self.now += max(ms, 0)
            await asyncio.sleep(0)
            return

        future = asyncio.get_running_loop().create_future()
        entry = (self.now + ms, future)
        self._timers.append(entry)
        try:
            await future
        finally:
            if entry in self._timers:
                self._timers.remove(entry)

    def monotonic_ms(self) -> float:
        return self.now

    @property
    def pending_timers(self) -> int:
        """Timers still waiting; a cancelled timer stops counting immediately."""
        return sum(1 for _, future in self._timers if not future.done())

    async def advance(self, ms: float) -> None:
        """Move time forward and let woken tasks run."""
        self.now += ms
        for deadline, future in list(self._timers):
            if deadline <= self.now and not future.done():
                future.set_result(None)
        await settle()


async def settle(rounds: int = 10) -> None:
    """Yield to the loop a few times so chained callbacks can complete."""
    for _ in range(rounds):
        await asyncio.sleep(0)
