"""Bookkeeping for local writes the remote store has not confirmed yet."""

from __future__ import annotations

import logging
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional

from chatsync.metrics import pending_writes
from chatsync.models import PendingWrite
from chatsync.models import WriteOp
from chatsync.models import WriteStatus

logger = logging.getLogger(__name__)


class PendingWriteStore:
    """Per-group, insertion-ordered set of :class:`PendingWrite` records.

    A write leaves the store only when the remote store confirms it.  A
    failed write stays, carrying its attempt count and last error.
    """

    def __init__(self) -> None:
        self._by_group: Dict[str, Dict[str, PendingWrite]] = {}

    def add(self, write: PendingWrite) -> PendingWrite:
        group = self._by_group.setdefault(write.group_id, {})
        if write.write_id not in group:
            pending_writes.inc()
        group[write.write_id] = write
        return write

    def get(self, write_id: str) -> Optional[PendingWrite]:
        for group in self._by_group.values():
            if write_id in group:
                return group[write_id]
        return None

    def for_group(self, group_id: str, write_ids: Optional[Iterable[str]] = None) -> List[PendingWrite]:
        """Writes of *group_id* in submission order, optionally restricted to *write_ids*."""
        writes = list(self._by_group.get(group_id, {}).values())
        if write_ids is None:
            return writes
        wanted = set(write_ids)
        return [write for write in writes if write.write_id in wanted]

    def groups(self) -> List[str]:
        """Groups with at least one unconfirmed write."""
        return [group_id for group_id, writes in self._by_group.items() if writes]

    def confirm(self, write: PendingWrite) -> None:
        group = self._by_group.get(write.group_id)
        if group is None or group.pop(write.write_id, None) is None:
            return
        pending_writes.dec()
        if not group:
            del self._by_group[write.group_id]

    def record_failure(self, write: PendingWrite, error: str) -> None:
        write.attempt_count += 1
        write.last_error = error

    def mark_failed(self, writes: Iterable[PendingWrite]) -> None:
        for write in writes:
            write.status = WriteStatus.FAILED

    def has_unconfirmed_create(self, entity_id: str) -> bool:
        """True while a create for *entity_id* is still waiting on the remote store."""
        return any(
            write.op == WriteOp.CREATE and write.entity_id == entity_id
            for group in self._by_group.values()
            for write in group.values()
        )

    def count(self, group_id: Optional[str] = None) -> int:
        if group_id is not None:
            return len(self._by_group.get(group_id, {}))
        return sum(len(group) for group in self._by_group.values())

    def counts(self) -> Dict[str, int]:
        return {group_id: len(writes) for group_id, writes in self._by_group.items() if writes}
