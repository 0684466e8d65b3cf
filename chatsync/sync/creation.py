"""Creation gate: a parent must be durable before a dependent write starts.

This is a precondition check, not a retry.  If the parent did not persist,
the dependent write is aborted immediately with :class:`OrphanPrevented`
and is not queued; the caller retries the parent first.  Once the parent
exists, child failures are ordinary pending writes and belong to the
reconciler.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Optional
from typing import Set
from typing import TypeVar

from chatsync.errors import OrphanPrevented
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.metrics import orphans_prevented_total

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _extract_id(created: Any) -> Optional[str]:
    if created is None:
        return None
    if isinstance(created, str):
        return created or None
    entity_id = getattr(created, "id", None)
    return str(entity_id) if entity_id else None


class CreationGate:
    """Run ``child_create_fn(parent_id)`` only after a confirmed parent create."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._event_bus = event_bus
        self._durable: Set[str] = set()

    def is_durable(self, entity_id: str) -> bool:
        return entity_id in self._durable

    def mark_durable(self, entity_id: str) -> None:
        self._durable.add(entity_id)

    async def create_with_dependent(
        self,
        parent_create_fn: Callable[[], Awaitable[Any]],
        child_create_fn: Callable[[str], Awaitable[T]],
    ) -> T:
        """Create the parent, then the child that references it.

        ``parent_create_fn`` may return the new id, an object with an ``id``
        attribute, or ``None``/raise on failure.

        Raises:
            OrphanPrevented: the parent did not yield a durable identifier;
                ``child_create_fn`` was not called.
        """
        try:
            created = await parent_create_fn()
        except Exception as exc:  # noqa: BLE001 – any failure means no durable parent
            await self._abort(str(exc))
            raise OrphanPrevented(str(exc)) from exc

        parent_id = _extract_id(created)
        if parent_id is None:
            await self._abort("no identifier returned")
            raise OrphanPrevented("no identifier returned")

        self._durable.add(parent_id)
        logger.debug("Parent %s durable; creating dependent", parent_id)
        return await child_create_fn(parent_id)

    async def _abort(self, reason: str) -> None:
        orphans_prevented_total.inc()
        logger.warning("Dependent write aborted: parent creation failed (%s)", reason)
        if self._event_bus is not None:
            await self._event_bus.publish(EventType.ORPHAN_PREVENTED, {"reason": reason})
