"""Streaming chat reader for the ``gemini-chat`` edge function.

The endpoint answers with Server-Sent Events, one JSON object per
``data:`` line:

* ``{"type": "chunk", "text": ...}`` carries the *cumulative* reply so far;
* ``{"type": "done", "text": ..., "groundingUrls": [...], "usage": {...}}``;
* ``{"type": "error", "error": ...}``.

Malformed lines are skipped.  Two deadlines guard the read: no chunk within
``chunk_idle_ms``, or the whole stream exceeding ``total_deadline_ms``.
Either one ends the stream gracefully with whatever text arrived.  Both use
the timeout gate with ``cancel_on_timeout=True``: cancelling the read exits
the ``client.stream`` context, which closes the HTTP response.  The same
applies to an explicit abort.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any
from typing import AsyncIterator
from typing import Callable
from typing import Dict
from typing import List
from typing import Literal
from typing import Optional

import httpx
from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError

from chatsync.config import Settings
from chatsync.core.interfaces import Clock
from chatsync.errors import InvalidApiKeyError
from chatsync.errors import StreamError
from chatsync.models import FinishReason
from chatsync.models import GroundingUrl
from chatsync.models import StreamResult
from chatsync.models import Usage
from chatsync.utils.timeout import TimeoutGate

logger = logging.getLogger(__name__)

CHAT_FUNCTION_PATH = "/functions/v1/gemini-chat"

CONNECTION_ERROR_TEXT = "I'm having trouble connecting right now. Please try again."
EMPTY_RESPONSE_TEXT = "I received your message, but couldn't generate a response. Please try rephrasing."

_CONCISE = (
    "\n\nIMPORTANT: Please be extremely concise and brief in your response. "
    "Avoid unnecessary elaboration. Get straight to the point."
)
_DETAILED = (
    "\n\nIMPORTANT: Please provide a detailed, comprehensive, and in-depth response. "
    "Explain your reasoning where applicable."
)

_IDLE = object()
_TOTAL = object()
_EOF = object()

ChunkCallback = Callable[[str], None]


class ChatTurn(BaseModel):
    role: str
    content: str


class ChatRequest(BaseModel):
    """Everything the chat endpoint needs for one reply."""

    messages: List[ChatTurn]
    system_instruction: str = ""
    model_id: str
    use_search: bool = False
    response_length: Literal["concise", "detailed"] = "detailed"
    files: List[Dict[str, str]] = Field(default_factory=list)
    text_contexts: List[str] = Field(default_factory=list)
    rag_context: Optional[str] = None

    def to_body(self) -> Dict[str, Any]:
        suffix = _CONCISE if self.response_length == "concise" else _DETAILED
        return {
            "messages": [turn.model_dump() for turn in self.messages if turn.content.strip()],
            "systemInstruction": self.system_instruction + suffix,
            "modelId": self.model_id,
            "useSearch": self.use_search,
            "files": self.files,
            "textContexts": self.text_contexts,
            "ragContext": self.rag_context,
        }


class _StreamState:
    """Mutable progress shared with the read task, survives its cancellation."""

    def __init__(self, on_chunk: Optional[ChunkCallback]):
        self.text = ""
        self.grounding_urls: List[GroundingUrl] = []
        self.usage = Usage()
        self._on_chunk = on_chunk

    def emit(self, text: str) -> None:
        self.text = text
        if self._on_chunk is not None:
            self._on_chunk(text)


def _parse_grounding(raw: Any) -> List[GroundingUrl]:
    urls = []
    for item in raw or []:
        try:
            urls.append(GroundingUrl.model_validate(item))
        except ValidationError:
            logger.debug("Skipping malformed grounding url: %s", item)
    return urls


class StreamReader:
    """Read one streamed reply, bounded by idle and total deadlines."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        chunk_idle_ms: float = 30_000,
        total_deadline_ms: float = 300_000,
        clock: Optional[Clock] = None,
    ):
        self._client = client
        self._api_key = api_key
        self._chunk_idle_ms = chunk_idle_ms
        self._total_deadline_ms = total_deadline_ms
        self._gate = TimeoutGate(clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ) -> "StreamReader":
        client = client or httpx.AsyncClient(base_url=settings.backend_url, timeout=None)
        return cls(
            client,
            api_key=settings.backend_anon_key,
            chunk_idle_ms=settings.stream_chunk_idle_ms,
            total_deadline_ms=settings.stream_total_deadline_ms,
            clock=clock,
        )

    async def stream(
        self,
        request: ChatRequest,
        on_chunk: Optional[ChunkCallback] = None,
        abort: Optional[asyncio.Event] = None,
    ) -> StreamResult:
        """Stream a reply, calling *on_chunk* with the cumulative text.

        Setting *abort* stops the read and returns the partial text.

        Raises:
            InvalidApiKeyError: the server rejected its model API key.  Every
                other failure is folded into a friendly error reply.
        """
        state = _StreamState(on_chunk)
        read = asyncio.ensure_future(
            self._gate.run(
                self._read(request, state),
                self._total_deadline_ms,
                _TOTAL,
                label="stream_total",
                cancel_on_timeout=True,
            )
        )
        abort_wait = asyncio.ensure_future(abort.wait()) if abort is not None else None

        try:
            waiters = {read} if abort_wait is None else {read, abort_wait}
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            read.cancel()
            raise
        finally:
            if abort_wait is not None:
                abort_wait.cancel()

        if not read.done():
            read.cancel()
            await asyncio.gather(read, return_exceptions=True)
            logger.info("Stream aborted after %d chars", len(state.text))
            return self._result(state, FinishReason.ABORTED)

        try:
            outcome = read.result()
        except InvalidApiKeyError:
            raise
        except (StreamError, httpx.HTTPError) as exc:
            logger.error("Chat stream failed: %s", exc)
            state.emit(CONNECTION_ERROR_TEXT)
            return StreamResult(text=CONNECTION_ERROR_TEXT, usage=state.usage, finish_reason=FinishReason.ERROR, error=str(exc))

        finish = FinishReason.TOTAL_TIMEOUT if outcome is _TOTAL else outcome
        if not state.text:
            state.emit(EMPTY_RESPONSE_TEXT)
            return StreamResult(
                text=EMPTY_RESPONSE_TEXT,
                usage=state.usage,
                finish_reason=FinishReason.EMPTY if finish == FinishReason.DONE else finish,
            )
        return self._result(state, finish)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _result(state: _StreamState, finish: FinishReason) -> StreamResult:
        return StreamResult(text=state.text, grounding_urls=state.grounding_urls, usage=state.usage, finish_reason=finish)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
        }

    async def _read(self, request: ChatRequest, state: _StreamState) -> FinishReason:
        async with self._client.stream("POST", CHAT_FUNCTION_PATH, json=request.to_body(), headers=self._headers()) as resp:
            if resp.status_code >= 400:
                await self._raise_for_status(resp)

            lines = resp.aiter_lines()
            while True:
                line = await self._gate.run(
                    self._next_line(lines),
                    self._chunk_idle_ms,
                    _IDLE,
                    label="stream_chunk_idle",
                    cancel_on_timeout=True,
                )
                if line is _IDLE:
                    logger.info("No chunk for %sms; ending stream", self._chunk_idle_ms)
                    return FinishReason.IDLE_TIMEOUT
                if line is _EOF:
                    return FinishReason.DONE
                if self._handle_line(line, state):
                    return FinishReason.DONE

    @staticmethod
    async def _next_line(lines: AsyncIterator[str]) -> Any:
        try:
            return await lines.__anext__()
        except StopAsyncIteration:
            return _EOF

    @staticmethod
    def _handle_line(line: str, state: _StreamState) -> bool:
        """Apply one SSE line; return True on the terminal ``done`` frame."""
        if not line.startswith("data: "):
            return False
        try:
            data = json.loads(line[6:])
        except json.JSONDecodeError:
            logger.debug("Skipping malformed SSE line: %.80s", line)
            return False
        if not isinstance(data, dict):
            return False

        frame = data.get("type")
        if frame == "chunk":
            state.emit(data.get("text") or "")
        elif frame == "done":
            state.grounding_urls = _parse_grounding(data.get("groundingUrls"))
            try:
                state.usage = Usage.model_validate(data.get("usage") or {})
            except ValidationError:
                logger.debug("Ignoring malformed usage block: %s", data.get("usage"))
            state.emit(data.get("text") or state.text)
            return True
        elif frame == "error":
            raise StreamError(str(data.get("error") or "stream error"))
        return False

    @staticmethod
    async def _raise_for_status(resp: httpx.Response) -> None:
        body = await resp.aread()
        try:
            error = str(json.loads(body).get("error") or "")
        except (ValueError, AttributeError):
            error = body.decode("utf-8", "ignore")
        if "API key" in error or "API_KEY" in error:
            raise InvalidApiKeyError("Server API key issue")
        raise StreamError(error or f"Chat request failed with HTTP {resp.status_code}")


__all__ = [
    "CONNECTION_ERROR_TEXT",
    "ChatRequest",
    "ChatTurn",
    "EMPTY_RESPONSE_TEXT",
    "StreamReader",
]
