"""Tests for the memory / title edge-function client."""

import asyncio
import json

import httpx
import pytest

from chatsync.services.context_client import ContextClient
from chatsync.services.context_client import build_conversation_summary
from chatsync.testing import ManualClock
from tests.conftest import make_settings

BASE_URL = "https://backend.test"


def _client(handler, clock=None) -> ContextClient:
    http = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return ContextClient(http, api_key="anon-key", clock=clock or ManualClock())


def test_conversation_summary_uses_recent_user_turns():
    messages = [{"role": "user", "content": "ancient history"}]
    messages += [
        {"role": "user", "content": "plan a trip to Kyoto"},
        {"role": "model", "content": "Sure!"},
        {"role": "user", "content": "x" * 150},
        {"role": "model", "content": "..."},
        {"role": "user", "content": "budget?"},
        {"role": "model", "content": "..."},
    ]

    summary = build_conversation_summary(messages)

    assert "ancient history" not in summary
    assert summary == "plan a trip to Kyoto; " + "x" * 100 + "; budget?"


def test_conversation_summary_is_capped():
    messages = [{"role": "user", "content": "y" * 100}] * 6

    assert len(build_conversation_summary(messages)) == 300


@pytest.mark.asyncio
async def test_get_context_sends_topic_hint():
    bodies = []

    def handler(request):
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={"context": "User prefers tea."})

    context = await _client(handler).get_context("what should I drink?", "chat-1", "morning routine")

    assert context == "User prefers tea."
    path, body = bodies[0]
    assert path == "/functions/v1/get-rag-context"
    assert body == {
        "user_message": "[Current conversation topic: morning routine] what should I drink?",
        "conversation_id": "chat-1",
    }


@pytest.mark.asyncio
async def test_get_context_skips_blank_messages():
    def handler(request):
        raise AssertionError("no request expected")

    assert await _client(handler).get_context("   ") == ""


@pytest.mark.asyncio
async def test_get_context_failure_is_empty():
    client = _client(lambda request: httpx.Response(500, json={"error": "boom"}))

    assert await client.get_context("hello") == ""


@pytest.mark.asyncio
async def test_get_context_deadline_returns_empty():
    clock = ManualClock()
    release = asyncio.Event()

    async def handler(request):
        await release.wait()
        return httpx.Response(200, json={"context": "too late"})

    client = _client(handler, clock)
    task = asyncio.ensure_future(client.get_context("hello"))
    for _ in range(50):
        if clock.pending_timers:
            break
        await asyncio.sleep(0)

    await clock.advance(10_000)
    assert await task == ""
    assert client._gate.detached_count == 1

    # The detached request is allowed to finish; its result is dropped.
    release.set()
    for _ in range(200):
        if client._gate.detached_count == 0:
            break
        await asyncio.sleep(0)
    assert client._gate.detached_count == 0


@pytest.mark.asyncio
async def test_save_memory():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True})

    assert await _client(handler).save_memory("user-1", "chat-1", "hi", "hello!") is True
    assert bodies[0]["text"] == "User: hi\nBot: hello!"
    assert bodies[0]["metadata"]["conversation_id"] == "chat-1"

    failing = _client(lambda request: httpx.Response(503))
    assert await failing.save_memory("user-1", "chat-1", "hi", "hello!") is False


@pytest.mark.asyncio
async def test_generate_title():
    client = _client(lambda request: httpx.Response(200, json={"title": '"Trip to Kyoto"'}))

    assert await client.generate_title("plan a trip to Kyoto") == "Trip to Kyoto"
    assert await client.generate_title("x") is None


@pytest.mark.asyncio
async def test_generate_title_failure():
    client = _client(lambda request: httpx.Response(500))

    assert await client.generate_title("plan a trip") is None


def test_from_settings_uses_fetch_deadline():
    client = ContextClient.from_settings(make_settings(context_fetch_deadline_ms=2500))

    assert client._fetch_deadline_ms == 2500
