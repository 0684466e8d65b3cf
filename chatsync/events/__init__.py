"""Event bus and event handling infrastructure."""

from .event_bus import EventBus
from .event_bus import EventType

__all__ = ["EventBus", "EventType"]
