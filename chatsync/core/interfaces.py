"""Abstract interfaces for the collaborators the sync layer depends on.

The sync layer never talks to a vendor SDK directly.  It depends on these
contracts so production adapters (see :mod:`chatsync.services.rest_store`)
and in-memory doubles (see :mod:`chatsync.testing`) are interchangeable.
"""

from __future__ import annotations

from abc import ABC
from abc import abstractmethod
from typing import Any
from typing import Callable
from typing import Dict
from typing import Optional

from chatsync.models import Entity
from chatsync.models import RemoteEvent
from chatsync.models import SubscriptionState

EventCallback = Callable[[RemoteEvent], None]
StatusCallback = Callable[[SubscriptionState, Optional[str]], None]
ConnectivityHandler = Callable[[bool], None]


class Subscription(ABC):
    """A live realtime channel returned by :meth:`RemoteStore.subscribe`."""

    @abstractmethod
    async def close(self) -> None:
        """Tear the channel down; no callbacks fire afterwards."""
        pass


class RealtimeSource(ABC):
    """Source of realtime change notifications for one or more topics."""

    @abstractmethod
    async def subscribe(self, topic: str, on_event: EventCallback, on_status: StatusCallback) -> Subscription:
        """Open a channel for *topic*.

        ``on_status`` receives every state change reported by the transport
        (``connecting``, ``subscribed``, ``error`` with a reason, ``closed``).
        """
        pass


class RemoteStore(RealtimeSource):
    """Abstract interface for the remote entity store.

    Every mutating call raises :class:`chatsync.errors.RemoteStoreError` on
    failure.
    """

    @abstractmethod
    async def create(self, entity_type: str, payload: Dict[str, Any]) -> Entity:
        """Persist a new record; ``payload['id']`` is the client-assigned id."""
        pass

    @abstractmethod
    async def update(self, entity_type: str, entity_id: str, patch: Dict[str, Any]) -> Entity:
        """Apply *patch* to an existing record."""
        pass

    @abstractmethod
    async def delete(self, entity_type: str, entity_id: str) -> None:
        """Remove a record."""
        pass


class Platform(ABC):
    """Connectivity signals of the host platform."""

    @abstractmethod
    def is_online(self) -> bool:
        """Return the connectivity state the platform currently reports."""
        pass

    @abstractmethod
    def on_connectivity_change(self, handler: ConnectivityHandler) -> Callable[[], None]:
        """Register *handler* for online/offline transitions.

        Returns a callable that unregisters the handler.
        """
        pass


class Clock(ABC):
    """Timer source used for backoff delays and deadlines."""

    @abstractmethod
    async def after(self, ms: float) -> None:
        """Resolve once *ms* milliseconds have elapsed."""
        pass

    @abstractmethod
    def monotonic_ms(self) -> float:
        """Monotonic time in milliseconds."""
        pass
