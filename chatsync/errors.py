"""Error taxonomy for the sync layer.

Only :class:`TerminalWriteFailure` and :class:`OrphanPrevented` are meant to
reach the user-visible layer.  Timeouts and transient write failures are
recovered inside the layer; subscription errors are reported through health
state and never halt local operation.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence


class SyncErrorKind(str, Enum):
    """Machine-readable classification used in event payloads and health."""

    TIMEOUT = "timeout"
    TRANSIENT_WRITE_FAILURE = "transient_write_failure"
    TERMINAL_WRITE_FAILURE = "terminal_write_failure"
    SUBSCRIPTION_ERROR = "subscription_error"
    ORPHAN_PREVENTED = "orphan_prevented"


class SyncError(Exception):
    """Base class for every error raised by chatsync."""

    kind: SyncErrorKind | None = None


class OperationTimeout(SyncError):
    """A guarded call did not finish before its deadline."""

    kind = SyncErrorKind.TIMEOUT

    def __init__(self, label: str, deadline_ms: float):
        self.label = label
        self.deadline_ms = deadline_ms
        super().__init__(f"{label} timed out after {deadline_ms:g}ms")


class RemoteStoreError(SyncError):
    """A create/update/delete/subscribe call against the remote store failed.

    The reconciler treats every instance as a *transient* write failure and
    retries it up to the configured ceiling.
    """

    kind = SyncErrorKind.TRANSIENT_WRITE_FAILURE

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class TerminalWriteFailure(SyncError):
    """The retry ceiling was exhausted; the writes remain pending."""

    kind = SyncErrorKind.TERMINAL_WRITE_FAILURE

    def __init__(self, group_id: str, write_ids: Sequence[str], attempts: int):
        self.group_id = group_id
        self.write_ids = list(write_ids)
        self.attempts = attempts
        super().__init__(
            f"{len(self.write_ids)} write(s) for group {group_id} still unconfirmed after {attempts} attempt(s)"
        )


class SubscriptionError(SyncError):
    """A realtime channel entered the error state."""

    kind = SyncErrorKind.SUBSCRIPTION_ERROR

    def __init__(self, topic: str, reason: str | None = None):
        self.topic = topic
        self.reason = reason
        super().__init__(f"subscription {topic} errored: {reason or 'unknown'}")


class OrphanPrevented(SyncError):
    """The parent did not durably persist, so the dependent write was aborted."""

    kind = SyncErrorKind.ORPHAN_PREVENTED

    def __init__(self, reason: str | None = None):
        self.reason = reason
        message = "parent creation failed, dependent write aborted"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class StreamError(SyncError):
    """The streaming endpoint reported an error frame or a non-OK status."""


class InvalidApiKeyError(StreamError):
    """The chat endpoint rejected the server-side API key."""

    def __init__(self, message: str = "Invalid API Key"):
        super().__init__(message)


__all__ = [
    "InvalidApiKeyError",
    "OperationTimeout",
    "OrphanPrevented",
    "RemoteStoreError",
    "StreamError",
    "SubscriptionError",
    "SyncError",
    "SyncErrorKind",
    "TerminalWriteFailure",
]
