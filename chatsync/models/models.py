"""Pydantic models for synchronised records and sync-layer bookkeeping."""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

from pydantic import BaseModel
from pydantic import Field

from chatsync.models.enums import ChangeKind
from chatsync.models.enums import FinishReason
from chatsync.models.enums import SubscriptionState
from chatsync.models.enums import WriteOp
from chatsync.models.enums import WriteStatus


def now_ms() -> int:
    """Milliseconds since epoch."""
    return int(time.time() * 1000)


def to_timestamp(value: Any) -> int:
    """Normalise a revision/timestamp value to integer milliseconds.

    Accepts ``datetime`` objects, numbers and ISO-8601 strings.  Anything
    unparsable falls back to *now* so a malformed server value never breaks
    ordering of freshly received rows.
    """
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    if isinstance(value, bool):
        return now_ms()
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return now_ms()
    return now_ms()


# ---------------------------------------------------------------------------
# Remote records
# ---------------------------------------------------------------------------


class Entity(BaseModel):
    """A remote-synchronised record (a chat, a message, ...)."""

    id: str = Field(description="Client-assigned identifier, stable after creation")
    entity_type: str = Field(description="Remote table, e.g. 'chats' or 'messages'")
    group_id: Optional[str] = Field(default=None, description="Chat the record belongs to")
    parent_id: Optional[str] = Field(default=None, description="Record that must exist first")
    revision: int = Field(default_factory=now_ms, description="Ordering marker (ms or counter)")
    payload: Dict[str, Any] = Field(default_factory=dict)


class RemoteEvent(BaseModel):
    """One realtime change notification received from the remote store."""

    topic: str
    kind: ChangeKind
    entity: Entity
    received_at: int = Field(default_factory=now_ms)

    @property
    def group_id(self) -> Optional[str]:
        return self.entity.group_id


# ---------------------------------------------------------------------------
# Local bookkeeping
# ---------------------------------------------------------------------------


class PendingWrite(BaseModel):
    """A local mutation the remote store has not confirmed yet."""

    write_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    op: WriteOp
    entity_type: str
    entity_id: str
    group_id: str
    parent_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: int = Field(default_factory=now_ms)
    attempt_count: int = 0
    status: WriteStatus = WriteStatus.PENDING
    last_error: Optional[str] = None

    @classmethod
    def create(cls, entity: Entity) -> "PendingWrite":
        """Pending insert of *entity*; the payload carries the client id."""
        payload = dict(entity.payload)
        payload.setdefault("id", entity.id)
        return cls(
            op=WriteOp.CREATE,
            entity_type=entity.entity_type,
            entity_id=entity.id,
            group_id=entity.group_id or entity.id,
            parent_id=entity.parent_id,
            payload=payload,
        )

    @classmethod
    def update(cls, entity_type: str, entity_id: str, group_id: str, patch: Dict[str, Any]) -> "PendingWrite":
        return cls(
            op=WriteOp.UPDATE,
            entity_type=entity_type,
            entity_id=entity_id,
            group_id=group_id,
            payload=dict(patch),
        )

    @classmethod
    def delete(cls, entity_type: str, entity_id: str, group_id: str) -> "PendingWrite":
        return cls(op=WriteOp.DELETE, entity_type=entity_type, entity_id=entity_id, group_id=group_id)


class SubscriptionHandle(BaseModel):
    """Health record for one realtime channel."""

    topic: str
    state: SubscriptionState = SubscriptionState.CONNECTING
    last_error: Optional[str] = None
    attempts: int = 1
    updated_at: int = Field(default_factory=now_ms)


class ConnectivityState(BaseModel):
    online: bool
    changed_at: int = Field(default_factory=now_ms)


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class GroundingUrl(BaseModel):
    title: str = ""
    uri: str


class Usage(BaseModel):
    input: int = 0
    output: int = 0


class StreamResult(BaseModel):
    """Outcome of one streamed chat response."""

    text: str = ""
    grounding_urls: List[GroundingUrl] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    finish_reason: FinishReason = FinishReason.DONE
    error: Optional[str] = None
