"""Data models for the sync layer."""

from .enums import ChangeKind
from .enums import FinishReason
from .enums import RouteOutcome
from .enums import SubscriptionState
from .enums import WriteOp
from .enums import WriteStatus
from .models import ConnectivityState
from .models import Entity
from .models import GroundingUrl
from .models import PendingWrite
from .models import RemoteEvent
from .models import StreamResult
from .models import SubscriptionHandle
from .models import Usage
from .models import now_ms
from .models import to_timestamp

__all__ = [
    "ChangeKind",
    "ConnectivityState",
    "Entity",
    "FinishReason",
    "GroundingUrl",
    "PendingWrite",
    "RemoteEvent",
    "RouteOutcome",
    "StreamResult",
    "SubscriptionHandle",
    "SubscriptionState",
    "Usage",
    "WriteOp",
    "WriteStatus",
    "now_ms",
    "to_timestamp",
]
