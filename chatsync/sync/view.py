"""Client-side view of confirmed remote state.

This is what the UI renders.  Entities only arrive here after they leave the
sync layer's private structures: routed or flushed realtime events, and
writes the remote store has confirmed.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable
from typing import Deque
from typing import Dict
from typing import List
from typing import Optional

from chatsync.models import ChangeKind
from chatsync.models import Entity
from chatsync.models import RemoteEvent

logger = logging.getLogger(__name__)

_GLOBAL = "__global__"


class ViewState:
    """Entities per group, keyed by id, in first-seen order.

    Upserts honour the revision marker: an update older than what the view
    already shows is ignored, so an out-of-order echo of a local write never
    rolls the UI back.
    """

    def __init__(self, history_limit: int = 1000) -> None:
        self._groups: Dict[str, Dict[str, Entity]] = {}
        self._applied: Deque[RemoteEvent] = deque(maxlen=history_limit)
        self._listeners: List[Callable[[RemoteEvent], None]] = []

    def add_listener(self, listener: Callable[[RemoteEvent], None]) -> None:
        self._listeners.append(listener)

    def apply(self, event: RemoteEvent) -> None:
        entity = event.entity
        bucket = self._groups.setdefault(entity.group_id or _GLOBAL, {})

        if event.kind == ChangeKind.DELETE:
            bucket.pop(entity.id, None)
        else:
            current = bucket.get(entity.id)
            if current is not None and current.revision > entity.revision:
                logger.debug("Ignoring stale revision %s for %s", entity.revision, entity.id)
            else:
                bucket[entity.id] = entity

        self._applied.append(event)
        for listener in self._listeners:
            listener(event)

    def upsert_confirmed(self, entity: Entity, topic: str = "local") -> None:
        """Reflect a write the remote store just confirmed."""
        self.apply(RemoteEvent(topic=topic, kind=ChangeKind.UPDATE, entity=entity))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def entities(self, group_id: Optional[str]) -> List[Entity]:
        return list(self._groups.get(group_id or _GLOBAL, {}).values())

    def get(self, group_id: Optional[str], entity_id: str) -> Optional[Entity]:
        return self._groups.get(group_id or _GLOBAL, {}).get(entity_id)

    @property
    def applied_events(self) -> List[RemoteEvent]:
        """Recently applied events (bounded), in application order."""
        return list(self._applied)
