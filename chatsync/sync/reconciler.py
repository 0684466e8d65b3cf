"""Reconciler: commit unconfirmed writes with bounded back-off.

One *run* targets one group.  Each run makes at most
``policy.max_attempts`` passes over the group's pending writes, waiting
``policy.delay_for(attempt)`` before each pass (0 s / 1 s / 2 s by default).
Status is tracked per write: a confirmed write leaves the pending store at
once, whatever happens to its neighbours.

Ordering rules within a pass:

* a write whose parent still has an unconfirmed create is held back (the
  referential ordering invariant: children never persist before parents);
* once a write for an entity fails, later writes for the same entity wait
  for the next pass so updates cannot land out of order.

When the ceiling is reached the remaining writes are marked ``failed`` and a
``TERMINAL_WRITE_FAILURE`` event is published, but they stay pending.  The
next trigger (reconnect or manual retry) starts a fresh run.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Callable
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Set

from chatsync.core.interfaces import Clock
from chatsync.core.interfaces import RemoteStore
from chatsync.errors import TerminalWriteFailure
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.metrics import terminal_write_failures_total
from chatsync.metrics import write_attempts_total
from chatsync.models import Entity
from chatsync.models import PendingWrite
from chatsync.models import WriteOp
from chatsync.models import WriteStatus
from chatsync.sync.pending import PendingWriteStore
from chatsync.utils.retry import BackoffPolicy

logger = logging.getLogger(__name__)

ConfirmedCallback = Callable[[PendingWrite, Optional[Entity]], None]


class Reconciler:
    """Retry pending writes per group, never running twice for one group."""

    def __init__(
        self,
        store: RemoteStore,
        pending: PendingWriteStore,
        *,
        clock: Clock,
        is_online: Callable[[], bool],
        policy: Optional[BackoffPolicy] = None,
        event_bus: Optional[EventBus] = None,
        on_confirmed: Optional[ConfirmedCallback] = None,
    ):
        self._store = store
        self._pending = pending
        self._clock = clock
        self._is_online = is_online
        self._policy = policy or BackoffPolicy()
        self._event_bus = event_bus
        self._on_confirmed = on_confirmed

        # Run-in-progress flags; a second call for a busy group only asks
        # the active run to take one more look before it exits.
        self._running: Set[str] = set()
        self._rerun_requested: Set[str] = set()

        self.terminal_failures: Dict[str, TerminalWriteFailure] = {}

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    def is_running(self, group_id: str) -> bool:
        return group_id in self._running

    async def reconcile(self, group_id: str, pending_writes: Optional[Iterable[PendingWrite]] = None) -> bool:
        """Commit *pending_writes* (default: every pending write of the group).

        Returns:
            ``True`` once none of the targeted writes remain pending,
            ``False`` when the ceiling was hit, the platform is offline, or a
            run for this group is already in progress.  In the last case the
            active run starts over with a fresh attempt budget for the whole
            group once it finishes.
        """
        if group_id in self._running:
            self._rerun_requested.add(group_id)
            logger.debug("Reconcile for %s already running; coalesced", group_id)
            return False

        target_ids = None if pending_writes is None else {write.write_id for write in pending_writes}

        self._running.add(group_id)
        try:
            result = await self._run(group_id, target_ids)

            # A trigger that arrived mid-run gets one fresh run over every
            # pending write of the group, including ones that just failed.
            while group_id in self._rerun_requested:
                self._rerun_requested.discard(group_id)
                await self._run(group_id, None)
                result = not self._pending.for_group(group_id, target_ids)
        finally:
            self._running.discard(group_id)
            self._rerun_requested.discard(group_id)

        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run(self, group_id: str, target_ids: Optional[Set[str]]) -> bool:
        writes = self._pending.for_group(group_id, target_ids)
        if not writes:
            return True

        for write in writes:
            write.status = WriteStatus.PENDING

        for attempt in range(1, self._policy.max_attempts + 1):
            delay = self._policy.delay_for(attempt)
            if delay > 0:
                await self._clock.after(delay)

            if not self._is_online():
                logger.info("Offline; deferring reconciliation of group %s", group_id)
                return False

            writes = self._pending.for_group(group_id, target_ids)
            if not writes:
                break

            logger.debug("Reconcile %s attempt %d/%d (%d write(s))", group_id, attempt, self._policy.max_attempts, len(writes))
            await self._attempt_pass(writes)

            if not self._pending.for_group(group_id, target_ids):
                break
        else:
            remaining = self._pending.for_group(group_id, target_ids)
            await self._report_terminal(group_id, remaining)
            return False

        self.terminal_failures.pop(group_id, None)
        return True

    async def _attempt_pass(self, writes: List[PendingWrite]) -> None:
        blocked: Set[str] = set()

        for write in writes:
            if write.entity_id in blocked:
                continue
            if write.parent_id and (
                write.parent_id in blocked or self._pending.has_unconfirmed_create(write.parent_id)
            ):
                logger.debug("Holding %s until parent %s is confirmed", write.entity_id, write.parent_id)
                blocked.add(write.entity_id)
                continue

            try:
                entity = await self._commit(write)
            except Exception as exc:  # noqa: BLE001 – every store failure is transient here
                self._pending.record_failure(write, str(exc))
                write_attempts_total.labels("failed").inc()
                blocked.add(write.entity_id)
                logger.info(
                    "Write %s (%s %s) failed on attempt %d: %s",
                    write.write_id,
                    write.op.value,
                    write.entity_id,
                    write.attempt_count,
                    exc,
                )
                continue

            self._pending.confirm(write)
            write_attempts_total.labels("confirmed").inc()
            if entity is not None:
                entity = entity.model_copy(
                    update={
                        "group_id": entity.group_id or write.group_id,
                        "parent_id": entity.parent_id or write.parent_id,
                    }
                )
            if self._on_confirmed is not None:
                self._on_confirmed(write, entity)
            await self._publish(
                EventType.WRITE_CONFIRMED,
                {"group_id": write.group_id, "write_id": write.write_id, "entity_id": write.entity_id},
            )

    async def _commit(self, write: PendingWrite) -> Optional[Entity]:
        if write.op == WriteOp.CREATE:
            return await self._store.create(write.entity_type, write.payload)
        if write.op == WriteOp.UPDATE:
            return await self._store.update(write.entity_type, write.entity_id, write.payload)
        await self._store.delete(write.entity_type, write.entity_id)
        return None

    async def _report_terminal(self, group_id: str, remaining: List[PendingWrite]) -> None:
        self._pending.mark_failed(remaining)
        failure = TerminalWriteFailure(group_id, [w.write_id for w in remaining], self._policy.max_attempts)
        self.terminal_failures[group_id] = failure
        terminal_write_failures_total.inc()
        logger.warning("%s", failure)

        await self._publish(
            EventType.TERMINAL_WRITE_FAILURE,
            {
                "group_id": group_id,
                "write_ids": failure.write_ids,
                "attempts": failure.attempts,
                "errors": {w.write_id: w.last_error for w in remaining},
                "kind": failure.kind.value,
            },
        )

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(event_type, data)
