"""Message router: apply now, or park until the group is focused.

Every realtime event either reaches the view immediately (its group is the
one on screen, or it belongs to no group) or is appended to that group's
pending queue.  Nothing is ever dropped: the user may open the group minutes
later and must still see the event, in receipt order.

Neither :meth:`MessageRouter.route` nor :meth:`MessageRouter.flush` awaits.
Under the cooperative scheduler this makes each of them atomic, so a flush
racing a newly arriving event can neither lose nor duplicate it.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable
from typing import Deque
from typing import Dict
from typing import List
from typing import Optional

from chatsync.metrics import events_routed_total
from chatsync.models import RemoteEvent
from chatsync.models import RouteOutcome

logger = logging.getLogger(__name__)

ApplyFn = Callable[[RemoteEvent], None]


class MessageRouter:
    """Dispatch incoming events to the view or to per-group pending queues."""

    def __init__(self, apply: ApplyFn):
        self._apply = apply
        # group_id -> events in receipt order.  An entry exists only while it
        # holds at least one event.
        self._queues: Dict[str, Deque[RemoteEvent]] = {}

    def route(self, event: RemoteEvent, focused_group_id: Optional[str]) -> RouteOutcome:
        """Apply *event* if its group is focused, otherwise queue it.

        The focused group is passed in by the caller at dispatch time rather
        than captured when the router was built.
        """
        group_id = event.group_id

        if group_id is None or group_id == focused_group_id:
            self._apply(event)
            events_routed_total.labels(RouteOutcome.APPLIED.value).inc()
            return RouteOutcome.APPLIED

        self._queues.setdefault(group_id, deque()).append(event)
        events_routed_total.labels(RouteOutcome.QUEUED.value).inc()
        logger.debug("Queued %s event for unfocused group %s", event.kind.value, group_id)
        return RouteOutcome.QUEUED

    def flush(self, group_id: str) -> List[RemoteEvent]:
        """Apply and clear *group_id*'s queue in receipt order.

        Flushing a group with nothing queued is a no-op.
        """
        queue = self._queues.pop(group_id, None)
        if not queue:
            return []

        flushed = list(queue)
        for index, event in enumerate(flushed):
            try:
                self._apply(event)
            except Exception:
                # Put the unapplied tail back in front of anything queued meanwhile.
                remaining = deque(flushed[index:])
                remaining.extend(self._queues.pop(group_id, ()))
                self._queues[group_id] = remaining
                raise

        logger.debug("Flushed %d queued event(s) for group %s", len(flushed), group_id)
        return flushed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def peek(self, group_id: str) -> List[RemoteEvent]:
        return list(self._queues.get(group_id, ()))

    def pending_groups(self) -> List[str]:
        return list(self._queues)

    def queued_count(self, group_id: Optional[str] = None) -> int:
        if group_id is not None:
            return len(self._queues.get(group_id, ()))
        return sum(len(queue) for queue in self._queues.values())
