"""SyncEngine: one explicit context object owning the whole sync layer.

Everything that used to be process-wide (pending queues, pending writes,
connectivity, channel health) hangs off an engine instance, so independent
engines, e.g. one per test, never share state.

    engine = SyncEngine(store, platform)
    await engine.start(["messages", "chats", "folders"])
    engine.focus(chat_id)
    await engine.submit(PendingWrite.update("chats", chat_id, chat_id, {"title": "Hi"}))
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from chatsync.config import Settings
from chatsync.config import get_settings
from chatsync.core.clock import AsyncioClock
from chatsync.core.interfaces import Clock
from chatsync.core.interfaces import Platform
from chatsync.core.interfaces import RemoteStore
from chatsync.errors import RemoteStoreError
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.models import ChangeKind
from chatsync.models import Entity
from chatsync.models import PendingWrite
from chatsync.models import RemoteEvent
from chatsync.models import WriteOp
from chatsync.models import WriteStatus
from chatsync.sync.creation import CreationGate
from chatsync.sync.network import NetworkMonitor
from chatsync.sync.pending import PendingWriteStore
from chatsync.sync.reconciler import Reconciler
from chatsync.sync.router import MessageRouter
from chatsync.sync.subscriptions import SubscriptionSupervisor
from chatsync.sync.view import ViewState
from chatsync.utils.retry import BackoffPolicy

logger = logging.getLogger(__name__)


class SyncEngine:
    """Compose router, reconciler, monitors and gates around one view state."""

    def __init__(
        self,
        store: RemoteStore,
        platform: Platform,
        *,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.settings = settings or get_settings()
        self.clock = clock or AsyncioClock()
        self.event_bus = event_bus or EventBus()
        self._store = store

        self._focused_group_id: Optional[str] = None

        self.view = ViewState()
        self.pending = PendingWriteStore()
        self.router = MessageRouter(self.view.apply)
        self.creation = CreationGate(self.event_bus)
        self.reconciler = Reconciler(
            store,
            self.pending,
            clock=self.clock,
            is_online=lambda: self.network.online,
            policy=BackoffPolicy.from_settings(self.settings),
            event_bus=self.event_bus,
            on_confirmed=self._on_confirmed,
        )
        self.subscriptions = SubscriptionSupervisor(
            store,
            self.router,
            lambda: self._focused_group_id,
            event_bus=self.event_bus,
        )
        self.network = NetworkMonitor(
            platform,
            self.reconciler,
            self.pending,
            clock=self.clock,
            settle_ms=self.settings.network_settle_ms,
            event_bus=self.event_bus,
            on_reconnect=self._on_reconnect,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, topics: Iterable[str] = ()) -> None:
        self.network.start()
        for topic in topics:
            await self.subscriptions.watch(topic)
        logger.info("Sync engine started (online=%s)", self.network.online)

    async def shutdown(self) -> None:
        await self.network.stop()
        await self.subscriptions.close_all()
        await self.event_bus.drain()
        logger.info("Sync engine stopped; %d write(s) still pending", self.pending.count())

    # ------------------------------------------------------------------
    # Focus
    # ------------------------------------------------------------------

    @property
    def focused_group_id(self) -> Optional[str]:
        return self._focused_group_id

    def focus(self, group_id: Optional[str]) -> List[RemoteEvent]:
        """Make *group_id* the visible group and apply what queued for it.

        The focus switch and the flush happen without yielding, so an event
        arriving concurrently is either part of the flush or routed straight
        to the view afterwards.
        """
        self._focused_group_id = group_id
        if group_id is None:
            return []

        flushed = self.router.flush(group_id)
        if flushed:
            self.event_bus.publish_nowait(EventType.GROUP_FLUSHED, {"group_id": group_id, "count": len(flushed)})
        return flushed

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def submit(self, write: PendingWrite) -> bool:
        """Record *write* and try to commit it.

        Returns ``True`` when the write is confirmed by the time this call
        returns.  Offline, or with the group already reconciling, the write
        simply stays pending and ``False`` is returned.
        """
        self.pending.add(write)
        if not self.network.online:
            logger.debug("Offline; write %s queued for group %s", write.write_id, write.group_id)
            return False

        await self.reconciler.reconcile(write.group_id)
        return self.pending.get(write.write_id) is None

    async def create_with_dependent(self, parent_write: PendingWrite, child_write: PendingWrite) -> bool:
        """Create a parent (e.g. a chat) and then a write that references it.

        The parent create is attempted once, directly against the store.  If
        it fails, or the engine is offline so it cannot be attempted,
        :class:`~chatsync.errors.OrphanPrevented` propagates and the child is
        never recorded.  The child goes through :meth:`submit`, so
        its own failures are retried like any other pending write.
        """
        if parent_write.op != WriteOp.CREATE:
            raise ValueError("parent_write must be a create")

        async def create_parent() -> Entity:
            if not self.network.online:
                raise RemoteStoreError("offline")
            entity = await self._store.create(parent_write.entity_type, parent_write.payload)
            self._on_confirmed(parent_write, entity)
            return entity

        async def create_child(parent_id: str) -> bool:
            child = child_write.model_copy(update={"parent_id": parent_id})
            return await self.submit(child)

        return await self.creation.create_with_dependent(create_parent, create_child)

    async def retry(self, group_id: str) -> bool:
        """Manual retry affordance for a group with failed writes."""
        if not self.network.online:
            return False
        return await self.reconciler.reconcile(group_id)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def health(self) -> Dict[str, Any]:
        subscriptions = self.subscriptions.health()
        failed = {
            group_id: [w.write_id for w in self.pending.for_group(group_id) if w.status == WriteStatus.FAILED]
            for group_id in self.pending.groups()
        }
        return {
            "online": self.network.online,
            "focused_group_id": self._focused_group_id,
            "subscriptions_healthy": subscriptions["healthy"],
            "subscriptions": subscriptions["subscriptions"],
            "pending_writes": self.pending.counts(),
            "failed_writes": {group_id: ids for group_id, ids in failed.items() if ids},
            "queued_events": {group_id: self.router.queued_count(group_id) for group_id in self.router.pending_groups()},
        }

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def _on_confirmed(self, write: PendingWrite, entity: Optional[Entity]) -> None:
        if write.op == WriteOp.DELETE:
            gone = Entity(id=write.entity_id, entity_type=write.entity_type, group_id=write.group_id)
            self.view.apply(RemoteEvent(topic="local", kind=ChangeKind.DELETE, entity=gone))
            return

        if write.op == WriteOp.CREATE:
            self.creation.mark_durable(write.entity_id)
        if entity is not None:
            kind = ChangeKind.INSERT if write.op == WriteOp.CREATE else ChangeKind.UPDATE
            self.view.apply(RemoteEvent(topic="local", kind=kind, entity=entity))

    async def _on_reconnect(self) -> None:
        await self.subscriptions.recover()
