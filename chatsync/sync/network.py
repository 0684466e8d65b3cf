"""Network monitor: connectivity transitions drive reconciliation.

* offline → online: once the state has stayed online for the settle period,
  reconcile every group that has pending writes, one run per group, and
  ask the subscription supervisor to recover errored channels.
* online → offline: cancel any pending settle; no remote calls are made
  while offline and writes keep queueing locally.

Flapping restarts the settle timer, so only a stable online state triggers.
The reconciler's per-group guard prevents duplicate concurrent runs even if
two settles complete back to back.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import Optional
from typing import Set

from chatsync.core.interfaces import Clock
from chatsync.core.interfaces import Platform
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.models import ConnectivityState
from chatsync.sync.pending import PendingWriteStore
from chatsync.sync.reconciler import Reconciler

logger = logging.getLogger(__name__)


class NetworkMonitor:
    """Owns the process-wide :class:`ConnectivityState`."""

    def __init__(
        self,
        platform: Platform,
        reconciler: Reconciler,
        pending: PendingWriteStore,
        *,
        clock: Clock,
        settle_ms: float = 500,
        event_bus: Optional[EventBus] = None,
        on_reconnect: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self._platform = platform
        self._reconciler = reconciler
        self._pending = pending
        self._clock = clock
        self._settle_ms = settle_ms
        self._event_bus = event_bus
        self._on_reconnect = on_reconnect

        self.state: Optional[ConnectivityState] = None
        self._unregister: Optional[Callable[[], None]] = None
        self._settle_task: Optional[asyncio.Task] = None
        self._reconcile_tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._unregister is not None:
            return
        self.state = ConnectivityState(online=self._platform.is_online())
        self._unregister = self._platform.on_connectivity_change(self.handle_change)
        logger.info("Network monitor started (online=%s)", self.state.online)

    async def stop(self) -> None:
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight settle and reconciliation work."""
        while True:
            tasks = {task for task in self._reconcile_tasks if not task.done()}
            if self._settle_task is not None and not self._settle_task.done():
                tasks.add(self._settle_task)
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def online(self) -> bool:
        if self.state is None:
            return self._platform.is_online()
        return self.state.online

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def handle_change(self, online: bool) -> None:
        """Platform callback for online/offline signals."""
        if self.state is not None and self.state.online == online:
            return

        self.state = ConnectivityState(online=online)
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        if self._event_bus is not None:
            self._event_bus.publish_nowait(
                EventType.CONNECTIVITY_CHANGED,
                {"online": online, "changed_at": self.state.changed_at},
            )

        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
            self._settle_task = None

        if online:
            self._settle_task = asyncio.get_running_loop().create_task(self._settle())

    async def _settle(self) -> None:
        if self._settle_ms > 0:
            await self._clock.after(self._settle_ms)
        if not self.online:
            return

        # Reconciliation runs outside the settle task so a later offline
        # signal only cancels the wait, never a write in flight.
        task = asyncio.get_running_loop().create_task(self.reconcile_all())
        self._reconcile_tasks.add(task)
        task.add_done_callback(self._reconcile_done)

    def _reconcile_done(self, task: asyncio.Task) -> None:
        self._reconcile_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reconnect reconciliation failed: %s", task.exception())

    async def reconcile_all(self) -> Dict[str, bool]:
        """Reconcile every group with pending writes, once each."""
        if self._on_reconnect is not None:
            await self._on_reconnect()

        groups = self._pending.groups()
        if not groups:
            return {}

        logger.info("Reconnected; reconciling %d group(s)", len(groups))
        results = await asyncio.gather(*(self._reconciler.reconcile(group_id) for group_id in groups))
        return dict(zip(groups, results))
