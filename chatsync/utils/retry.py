"""Back-off policy for write reconciliation.

The policy lives in one place so call-sites stay concise while the
schedule (max attempts, base delay, cap, jitter) can be tuned centrally.

The default is the fixed schedule the client has always used: attempt 1
immediately, attempt 2 after 1 s, attempt 3 after 2 s.  Worst-case
UI-visible delay before a retry prompt is therefore 3 s.  Jitter defaults to
zero; set ``CHATSYNC_BACKOFF_JITTER`` to spread reconnect storms.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List
from typing import Optional

from chatsync.config import Settings


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential back-off with an attempt ceiling.

    Parameters
    ----------
    max_attempts:
        Inclusive – the *first* try counts. ``max_attempts=1`` disables retry.
    base_delay_ms:
        Delay before the second attempt (doubles on every further attempt).
    max_delay_ms:
        Upper bound for a single delay.
    jitter:
        0-1.0 – fraction of random noise added/subtracted from each delay.
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    jitter: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be within [0, 1]")

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            max_attempts=settings.retry_ceiling,
            base_delay_ms=float(settings.backoff_base_ms),
            max_delay_ms=float(settings.backoff_max_ms),
            jitter=settings.backoff_jitter,
        )

    def delay_for(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Milliseconds to wait before 1-based *attempt*."""
        if attempt <= 1:
            return 0.0
        delay = min(self.base_delay_ms * (2 ** (attempt - 2)), self.max_delay_ms)
        if self.jitter:
            delay *= 1 + (rng or random).uniform(-self.jitter, self.jitter)
        return max(delay, 0.0)

    def schedule(self) -> List[float]:
        """Nominal (jitter-free) delays for every attempt of one run."""
        return [
            0.0 if attempt == 1 else min(self.base_delay_ms * (2 ** (attempt - 2)), self.max_delay_ms)
            for attempt in range(1, self.max_attempts + 1)
        ]


__all__ = ["BackoffPolicy"]
