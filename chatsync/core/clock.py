"""Default :class:`~chatsync.core.interfaces.Clock` backed by the event loop."""

from __future__ import annotations

import asyncio
import time

from chatsync.core.interfaces import Clock


class AsyncioClock(Clock):
    """Real timers via :func:`asyncio.sleep`."""

    async def after(self, ms: float) -> None:
        await asyncio.sleep(max(ms, 0) / 1000)

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000
