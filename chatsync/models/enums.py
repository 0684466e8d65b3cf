"""Shared *Enum* definitions for the sync models.

The Enums inherit from ``str`` so that JSON serialisation renders plain
strings and equality checks against raw literals keep working.
"""

from __future__ import annotations

from enum import Enum


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class WriteOp(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class WriteStatus(str, Enum):
    PENDING = "pending"  # not yet confirmed, eligible for the next attempt
    FAILED = "failed"  # retry ceiling hit in the last run; still pending


class SubscriptionState(str, Enum):
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    CLOSED = "closed"


class RouteOutcome(str, Enum):
    APPLIED = "applied"
    QUEUED = "queued"


class FinishReason(str, Enum):
    """How a streamed response ended."""

    DONE = "done"
    IDLE_TIMEOUT = "idle_timeout"
    TOTAL_TIMEOUT = "total_timeout"
    ABORTED = "aborted"
    ERROR = "error"
    EMPTY = "empty"
