"""Timeout gate for remote calls.

``with_timeout`` races an awaitable against a timer from the injected
:class:`~chatsync.core.interfaces.Clock`.  If the timer wins, the caller gets
the fallback (or :class:`~chatsync.errors.OperationTimeout`) exactly once.

Cancellation is **best effort**.  Losing the race does not stop remote work:
by default the operation keeps running detached and whatever it eventually
returns or raises is discarded.  A request that already reached the backend
may still complete server-side.  Callers whose transport supports a real
abort pass ``cancel_on_timeout=True``.  The streaming reader does this, so
cancelling the read closes the HTTP response and stops the transfer.
Context fetches do not, because edge-function invocations cannot be recalled.

Detached losers are held by the :class:`TimeoutGate` that ran the race, so
each owner (a stream reader, a context client) can see what it left running.

Usage
-----

```python
gate = TimeoutGate(clock)
context = await gate.run(client.fetch(...), 10_000, "", label="context_fetch")
```
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from typing import Awaitable
from typing import Optional
from typing import Set
from typing import TypeVar

from chatsync.core.clock import AsyncioClock
from chatsync.core.interfaces import Clock
from chatsync.errors import OperationTimeout
from chatsync.metrics import timeouts_total

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RAISE: Any = object()


class TimeoutGate:
    """Deadline races sharing one clock and one set of detached losers."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or AsyncioClock()
        # Operations that lost the race and are still running.  Held here so
        # the loop does not garbage-collect them before they settle.
        self._detached: Set[asyncio.Future] = set()

    @property
    def detached_count(self) -> int:
        """Number of timed-out operations still running in the background."""
        return len(self._detached)

    async def run(
        self,
        operation: Awaitable[T],
        deadline_ms: float,
        fallback: Any = _RAISE,
        *,
        label: str = "operation",
        cancel_on_timeout: bool = False,
    ) -> T:
        """Await *operation* for at most *deadline_ms* milliseconds.

        Args:
            operation: Coroutine or future producing the result.
            deadline_ms: Positive deadline in milliseconds.
            fallback: Value returned when the deadline fires first.  When
                omitted an :class:`OperationTimeout` is raised instead.
            label: Name used in logs, metrics and the timeout error.
            cancel_on_timeout: Cancel the local task when the deadline fires.

        Returns:
            The operation's result, or *fallback* on timeout.
        """
        if deadline_ms <= 0:
            raise ValueError("deadline_ms must be positive")

        op_task = asyncio.ensure_future(operation)
        timer = asyncio.ensure_future(self.clock.after(deadline_ms))

        try:
            done, _ = await asyncio.wait({op_task, timer}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            op_task.cancel()
            timer.cancel()
            raise

        if op_task in done:
            # Completion wins ties; the timer must never fire a second outcome.
            timer.cancel()
            return op_task.result()

        timeouts_total.labels(label).inc()
        if cancel_on_timeout:
            op_task.cancel()
        else:
            self._detached.add(op_task)
            op_task.add_done_callback(self._discard_result(label))

        logger.info("%s exceeded %sms deadline", label, deadline_ms)

        if fallback is _RAISE:
            raise OperationTimeout(label, deadline_ms)
        return fallback

    def _discard_result(self, label: str):
        def _callback(task: asyncio.Future) -> None:
            self._detached.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.debug("Late failure of timed-out %s ignored: %s", label, exc)
            else:
                logger.debug("Late result of timed-out %s discarded", label)

        return _callback


async def with_timeout(
    operation: Awaitable[T],
    deadline_ms: float,
    fallback: Any = _RAISE,
    *,
    clock: Optional[Clock] = None,
    label: str = "operation",
    cancel_on_timeout: bool = False,
) -> T:
    """One-off :meth:`TimeoutGate.run` for callers without a gate of their own."""
    return await TimeoutGate(clock).run(
        operation, deadline_ms, fallback, label=label, cancel_on_timeout=cancel_on_timeout
    )


__all__ = [
    "TimeoutGate",
    "with_timeout",
]
