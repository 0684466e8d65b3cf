"""Edge-function client for long-term memory and chat titles.

``get_context`` is guarded by the timeout gate and never fails: on error
or after the fetch deadline (10 s by default) it yields an empty string, so
a slow memory lookup delays a reply by at most the deadline and never
blocks it.  The invocation itself is not recalled when the deadline fires.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timezone
from typing import Any
from typing import Dict
from typing import Mapping
from typing import Optional
from typing import Sequence

import httpx

from chatsync.config import Settings
from chatsync.core.interfaces import Clock
from chatsync.utils.timeout import TimeoutGate

logger = logging.getLogger(__name__)

RAG_CONTEXT_FUNCTION = "get-rag-context"
SAVE_MEMORY_FUNCTION = "embed-and-store-gemini-document"
TITLE_FUNCTION = "gemini-title"

_SUMMARY_WINDOW = 6  # last three exchanges
_SUMMARY_TURN_CHARS = 100
_SUMMARY_MAX_CHARS = 300


def build_conversation_summary(messages: Sequence[Mapping[str, Any]]) -> str:
    """Topic hint from the user's recent turns, used to bias memory lookups."""

    recent = messages[-_SUMMARY_WINDOW:]
    topics = "; ".join(
        str(message.get("content") or "")[:_SUMMARY_TURN_CHARS] for message in recent if message.get("role") == "user"
    )
    return topics[:_SUMMARY_MAX_CHARS]


class ContextClient:
    """Thin wrapper around the memory and title edge functions."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: str,
        fetch_deadline_ms: float = 10_000,
        clock: Optional[Clock] = None,
    ):
        self._client = client
        self._api_key = api_key
        self._fetch_deadline_ms = fetch_deadline_ms
        self._gate = TimeoutGate(clock)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ) -> "ContextClient":
        client = client or httpx.AsyncClient(base_url=settings.backend_url, timeout=30.0)
        return cls(
            client,
            api_key=settings.backend_anon_key,
            fetch_deadline_ms=settings.context_fetch_deadline_ms,
            clock=clock,
        )

    async def _invoke(self, function: str, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._client.post(
            f"/functions/v1/{function}",
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}", "apikey": self._api_key},
        )
        response.raise_for_status()
        if not response.content:
            return {}
        data = response.json()
        return data if isinstance(data, dict) else {}

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    async def get_context(
        self,
        user_message: str,
        conversation_id: Optional[str] = None,
        conversation_summary: Optional[str] = None,
    ) -> str:
        """Relevant long-term memory for *user_message*, or ``""``."""
        if not user_message or not user_message.strip():
            return ""

        query = user_message
        if conversation_summary:
            query = f"[Current conversation topic: {conversation_summary}] {user_message}"

        return await self._gate.run(
            self._fetch_context(query, conversation_id),
            self._fetch_deadline_ms,
            "",
            label="context_fetch",
        )

    async def _fetch_context(self, query: str, conversation_id: Optional[str]) -> str:
        try:
            data = await self._invoke(RAG_CONTEXT_FUNCTION, {"user_message": query, "conversation_id": conversation_id})
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Context fetch failed: %s", exc)
            return ""
        context = data.get("context") or ""
        logger.debug("Context received: %.100s", context or "(empty)")
        return context

    async def save_memory(self, user_id: str, conversation_id: str, user_message: str, bot_response: str) -> bool:
        """Store one exchange in the vector store.  Failures are logged, not raised."""
        body = {
            "text": f"User: {user_message}\nBot: {bot_response}",
            "metadata": {
                "user_id": user_id,
                "conversation_id": conversation_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
        try:
            await self._invoke(SAVE_MEMORY_FUNCTION, body)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Save memory failed: %s", exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Titles
    # ------------------------------------------------------------------

    async def generate_title(self, user_message: str) -> Optional[str]:
        if not user_message or len(user_message.strip()) < 2:
            return None
        try:
            data = await self._invoke(TITLE_FUNCTION, {"userMessage": user_message})
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Title generation failed: %s", exc)
            return None

        title = data.get("title")
        if not title:
            return None
        # Models like to wrap titles in quotes.
        return str(title).strip().strip('"') or None


__all__ = [
    "ContextClient",
    "build_conversation_summary",
]
