"""Client-side sync layer: routing, reconciliation and connectivity."""

from .creation import CreationGate
from .engine import SyncEngine
from .network import NetworkMonitor
from .pending import PendingWriteStore
from .reconciler import Reconciler
from .router import MessageRouter
from .subscriptions import SubscriptionSupervisor
from .view import ViewState

__all__ = [
    "CreationGate",
    "MessageRouter",
    "NetworkMonitor",
    "PendingWriteStore",
    "Reconciler",
    "SubscriptionSupervisor",
    "SyncEngine",
    "ViewState",
]
