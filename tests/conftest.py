import os

import pytest
from prometheus_client import REGISTRY

from chatsync.config import Settings
from chatsync.events import EventBus
from chatsync.events import EventType
from chatsync.sync.engine import SyncEngine
from chatsync.testing import FakePlatform
from chatsync.testing import InMemoryRemoteStore
from chatsync.testing import ManualClock

os.environ["TESTING"] = "1"


def make_settings(**overrides) -> Settings:
    """Settings with the documented defaults, independent of the environment."""

    values = dict(
        testing=True,
        log_level="DEBUG",
        retry_ceiling=3,
        backoff_base_ms=1000,
        backoff_max_ms=30000,
        backoff_jitter=0.0,
        context_fetch_deadline_ms=10000,
        stream_chunk_idle_ms=30000,
        stream_total_deadline_ms=300000,
        network_settle_ms=500,
        backend_url="https://backend.test",
        backend_anon_key="anon-key",
    )
    values.update(overrides)
    return Settings(**values)


def metric(name: str, **labels) -> float:
    """Current value of a Prometheus sample (0 when never observed)."""

    return REGISTRY.get_sample_value(name, labels) or 0.0


class Recorder:
    """Collects event-bus payloads per event type."""

    def __init__(self, bus: EventBus):
        self.events = {}
        self._bus = bus

    def watch(self, *event_types: EventType) -> "Recorder":
        for event_type in event_types:

            async def _handler(data, _type=event_type):
                self.events.setdefault(_type, []).append(data)

            self._bus.subscribe(event_type, _handler)
        return self

    def of(self, event_type: EventType):
        return self.events.get(event_type, [])


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def store():
    return InMemoryRemoteStore()


@pytest.fixture
def platform():
    return FakePlatform(online=True)


@pytest.fixture
def clock():
    """Clock whose timers resolve immediately but record every delay."""
    return ManualClock(auto_advance=True)


@pytest.fixture
def manual_clock():
    """Clock whose timers only fire on ``advance``."""
    return ManualClock()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def recorder(event_bus):
    return Recorder(event_bus).watch(*EventType)


@pytest.fixture
def engine(store, platform, settings, clock, event_bus):
    return SyncEngine(store, platform, settings=settings, clock=clock, event_bus=event_bus)
