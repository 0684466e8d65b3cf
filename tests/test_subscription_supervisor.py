"""Subscription supervisor: channel lifecycle, health and routing."""

from __future__ import annotations

import pytest

from chatsync.errors import RemoteStoreError
from chatsync.events import EventType
from chatsync.models import ChangeKind
from chatsync.models import Entity
from chatsync.models import RemoteEvent
from chatsync.models import SubscriptionState
from chatsync.sync.router import MessageRouter
from chatsync.sync.subscriptions import SubscriptionSupervisor
from chatsync.testing import settle
from tests.conftest import metric


class _Focus:
    def __init__(self):
        self.group_id = None

    def __call__(self):
        return self.group_id


@pytest.fixture
def applied():
    return []


@pytest.fixture
def focus():
    return _Focus()


@pytest.fixture
def router(applied):
    return MessageRouter(applied.append)


@pytest.fixture
def supervisor(store, router, focus, event_bus):
    return SubscriptionSupervisor(store, router, focus, event_bus=event_bus)


def _message(message_id: str, chat_id: str) -> Entity:
    return Entity(id=message_id, entity_type="messages", group_id=chat_id)


@pytest.mark.asyncio
async def test_watch_reaches_subscribed(supervisor, store):
    handle = await supervisor.watch("messages")

    assert handle.state == SubscriptionState.SUBSCRIBED
    assert len(store.channels("messages")) == 1
    assert supervisor.health()["healthy"] is True


@pytest.mark.asyncio
async def test_watch_is_idempotent(supervisor, store):
    first = await supervisor.watch("messages")
    second = await supervisor.watch("messages")

    assert first is second
    assert len(store.channels("messages")) == 1


@pytest.mark.asyncio
async def test_error_is_reported_without_self_retry(supervisor, store, recorder):
    await supervisor.watch("messages")
    before = metric("chatsync_subscription_errors_total")

    store.set_status("messages", SubscriptionState.ERROR, "CHANNEL_ERROR")
    await settle()

    handle = supervisor.handle("messages")
    assert handle.state == SubscriptionState.ERROR
    assert handle.last_error == "CHANNEL_ERROR"
    assert metric("chatsync_subscription_errors_total") == before + 1
    assert supervisor.health()["healthy"] is False
    assert recorder.of(EventType.SUBSCRIPTION_STATUS)[-1] == {
        "topic": "messages",
        "state": "error",
        "error": "CHANNEL_ERROR",
    }
    # No new channel was opened behind our back.
    assert len(store.channels("messages")) == 1


@pytest.mark.asyncio
async def test_transport_may_recover_on_its_own(supervisor, store):
    await supervisor.watch("messages")
    store.set_status("messages", SubscriptionState.ERROR, "timeout")
    store.set_status("messages", SubscriptionState.CONNECTING)
    store.set_status("messages", SubscriptionState.SUBSCRIBED)

    handle = supervisor.handle("messages")
    assert handle.state == SubscriptionState.SUBSCRIBED
    assert handle.last_error is None


@pytest.mark.asyncio
async def test_invalid_transition_is_ignored(supervisor, store):
    await supervisor.watch("messages")

    store.set_status("messages", SubscriptionState.CONNECTING)

    assert supervisor.handle("messages").state == SubscriptionState.SUBSCRIBED


@pytest.mark.asyncio
async def test_recover_recreates_errored_channels(supervisor, store):
    await supervisor.watch("messages")
    await supervisor.watch("chats")
    old = store.channels("messages")[0]
    store.set_status("messages", SubscriptionState.ERROR, "closed by server")

    recovered = await supervisor.recover()

    assert recovered == ["messages"]
    assert old.closed
    handle = supervisor.handle("messages")
    assert handle.state == SubscriptionState.SUBSCRIBED
    assert handle.attempts == 2
    assert supervisor.handle("chats").attempts == 1


@pytest.mark.asyncio
async def test_subscribe_failure_enters_error(supervisor, store):
    store.subscribe_error = RemoteStoreError("realtime unavailable")

    handle = await supervisor.watch("messages")

    assert handle.state == SubscriptionState.ERROR
    assert handle.last_error == "realtime unavailable"

    store.subscribe_error = None
    await supervisor.recover()
    assert handle.state == SubscriptionState.SUBSCRIBED


@pytest.mark.asyncio
async def test_events_use_focus_at_dispatch_time(supervisor, store, router, focus, applied):
    await supervisor.watch("messages")

    focus.group_id = "chat-a"
    store.emit("messages", _message("m1", "chat-b"))
    focus.group_id = "chat-b"
    store.emit("messages", _message("m2", "chat-b"))

    assert [e.entity.id for e in applied] == ["m2"]
    assert [e.entity.id for e in router.peek("chat-b")] == ["m1"]


@pytest.mark.asyncio
async def test_closed_channels_drop_late_events(supervisor, store, applied):
    await supervisor.watch("messages")
    channel = store.channels("messages")[0]

    await supervisor.close_all()
    # A lagging transport may still invoke the old callback.
    channel.on_event(RemoteEvent(topic="messages", kind=ChangeKind.INSERT, entity=_message("m1", None)))

    assert applied == []
    assert supervisor.handle("messages").state == SubscriptionState.CLOSED
    assert store.channels() == []


@pytest.mark.asyncio
async def test_watch_after_close_reopens(supervisor, store):
    await supervisor.watch("messages")
    await supervisor.close("messages")

    handle = await supervisor.watch("messages")

    assert handle.state == SubscriptionState.SUBSCRIBED
    assert len(store.channels("messages")) == 1
