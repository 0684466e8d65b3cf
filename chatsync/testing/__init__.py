"""Test doubles for the sync layer."""

from .fakes import FakePlatform
from .fakes import InMemoryRemoteStore
from .fakes import ManualClock
from .fakes import settle

__all__ = [
    "FakePlatform",
    "InMemoryRemoteStore",
    "ManualClock",
    "settle",
]
