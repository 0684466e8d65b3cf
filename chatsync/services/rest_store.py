"""RemoteStore adapter for a PostgREST-style gateway (``/rest/v1/<table>``).

* ``create`` is an upsert on the client-assigned id, so a retry after a lost
  response is harmless.
* Auth failures are retried once after session recovery.
* Every other failure surfaces as :class:`~chatsync.errors.RemoteStoreError`.

Realtime is not spoken here: the websocket transport belongs to the host.
Either inject a ready :class:`~chatsync.core.interfaces.RealtimeSource`, or
pass ``change_feed``, a coroutine function that opens a channel and hands
over raw change payloads (``eventType``/``new``/``old``).  Raw payloads are
mapped with :meth:`RestRemoteStore.parse_change` and unknown ones dropped.
"""

from __future__ import annotations

import logging
from typing import Any
from typing import Awaitable
from typing import Callable
from typing import Dict
from typing import List
from typing import Optional

import httpx

from chatsync.config import Settings
from chatsync.core.interfaces import EventCallback
from chatsync.core.interfaces import RealtimeSource
from chatsync.core.interfaces import RemoteStore
from chatsync.core.interfaces import StatusCallback
from chatsync.core.interfaces import Subscription
from chatsync.errors import RemoteStoreError
from chatsync.models import ChangeKind
from chatsync.models import Entity
from chatsync.models import RemoteEvent
from chatsync.models import to_timestamp
from chatsync.services.auth_retry import SessionRecovery
from chatsync.services.auth_retry import with_auth_retry

logger = logging.getLogger(__name__)

# Which column places a row in a chat, per table.  ``id`` means the row is
# the chat itself.
DEFAULT_GROUP_COLUMNS = {"chats": "id", "messages": "chat_id"}
# Which column references a row that must exist first.
DEFAULT_PARENT_COLUMNS = {"messages": "chat_id"}

_REVISION_COLUMNS = ("updated_at", "last_updated", "timestamp", "created_at")

_UPSERT = "resolution=merge-duplicates,return=representation"
_RETURN = "return=representation"

# (topic, on_change, on_status) -> open channel
ChangeFeed = Callable[[str, Callable[[Dict[str, Any]], None], StatusCallback], Awaitable[Subscription]]


def _error_from_response(response: httpx.Response) -> RemoteStoreError:
    message = response.text or response.reason_phrase
    code = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error") or message
        code = body.get("code")
    return RemoteStoreError(message, status_code=response.status_code, code=code)


def row_to_entity(
    entity_type: str,
    row: Dict[str, Any],
    *,
    group_columns: Optional[Dict[str, str]] = None,
    parent_columns: Optional[Dict[str, str]] = None,
) -> Entity:
    """Map a table row onto an :class:`Entity`."""
    group_column = (group_columns or DEFAULT_GROUP_COLUMNS).get(entity_type)
    parent_column = (parent_columns or DEFAULT_PARENT_COLUMNS).get(entity_type)

    extra: Dict[str, Any] = {}
    for column in _REVISION_COLUMNS:
        if row.get(column) is not None:
            extra["revision"] = to_timestamp(row[column])
            break

    return Entity(
        id=str(row["id"]),
        entity_type=entity_type,
        group_id=str(row[group_column]) if group_column and row.get(group_column) else None,
        parent_id=str(row[parent_column]) if parent_column and row.get(parent_column) else None,
        payload=dict(row),
        **extra,
    )


class RestRemoteStore(RemoteStore):
    """Remote entity store over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        realtime: Optional[RealtimeSource] = None,
        change_feed: Optional[ChangeFeed] = None,
        access_token: Optional[Callable[[], Optional[str]]] = None,
        recover_session: Optional[SessionRecovery] = None,
        client: Optional[httpx.AsyncClient] = None,
        group_columns: Optional[Dict[str, str]] = None,
        parent_columns: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ):
        if realtime is not None and change_feed is not None:
            raise ValueError("pass either realtime or change_feed, not both")
        self._api_key = api_key
        self._realtime = realtime
        self._change_feed = change_feed
        self._access_token = access_token
        self._recover_session = recover_session
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._group_columns = group_columns or DEFAULT_GROUP_COLUMNS
        self._parent_columns = parent_columns or DEFAULT_PARENT_COLUMNS

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "RestRemoteStore":
        if not settings.backend_url:
            raise ValueError("CHATSYNC_BACKEND_URL is not configured")
        return cls(settings.backend_url, settings.backend_anon_key, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------

    async def create(self, entity_type: str, payload: Dict[str, Any]) -> Entity:
        if not payload.get("id"):
            raise ValueError("create payload must carry the client-assigned 'id'")
        rows = await self._request(
            "POST",
            entity_type,
            json=[payload],
            params={"on_conflict": "id"},
            prefer=_UPSERT,
            context=f"Create {entity_type} {payload['id']}",
        )
        row = rows[0] if rows else payload
        logger.debug("Persisted %s %s", entity_type, payload["id"])
        return self.to_entity(entity_type, row)

    async def update(self, entity_type: str, entity_id: str, patch: Dict[str, Any]) -> Entity:
        rows = await self._request(
            "PATCH",
            entity_type,
            json=patch,
            params={"id": f"eq.{entity_id}"},
            prefer=_RETURN,
            context=f"Update {entity_type} {entity_id}",
        )
        if not rows:
            raise RemoteStoreError(f"{entity_type} {entity_id} not found", status_code=404)
        return self.to_entity(entity_type, rows[0])

    async def delete(self, entity_type: str, entity_id: str) -> None:
        await self._request(
            "DELETE",
            entity_type,
            params={"id": f"eq.{entity_id}"},
            context=f"Delete {entity_type} {entity_id}",
        )

    async def subscribe(self, topic: str, on_event: EventCallback, on_status: StatusCallback) -> Subscription:
        if self._realtime is not None:
            return await self._realtime.subscribe(topic, on_event, on_status)
        if self._change_feed is None:
            raise RemoteStoreError("no realtime source configured")

        def on_change(change: Dict[str, Any]) -> None:
            event = self.parse_change(topic, change)
            if event is not None:
                on_event(event)

        return await self._change_feed(topic, on_change, on_status)

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    def to_entity(self, entity_type: str, row: Dict[str, Any]) -> Entity:
        return row_to_entity(entity_type, row, group_columns=self._group_columns, parent_columns=self._parent_columns)

    def parse_change(self, topic: str, change: Dict[str, Any]) -> Optional[RemoteEvent]:
        """Translate a realtime change payload (``eventType``/``new``/``old``)."""
        try:
            kind = ChangeKind(str(change.get("eventType", "")).lower())
        except ValueError:
            logger.debug("Ignoring change with unknown type on %s: %s", topic, change.get("eventType"))
            return None

        row = change.get("old") if kind == ChangeKind.DELETE else change.get("new")
        table = change.get("table") or topic
        if not row or row.get("id") is None:
            return None
        return RemoteEvent(topic=topic, kind=kind, entity=self.to_entity(table, row))

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self, prefer: Optional[str]) -> Dict[str, str]:
        token = (self._access_token() if self._access_token else None) or self._api_key
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        method: str,
        table: str,
        *,
        json: Any = None,
        params: Optional[Dict[str, str]] = None,
        prefer: Optional[str] = None,
        context: str,
    ) -> List[Dict[str, Any]]:
        async def run() -> List[Dict[str, Any]]:
            # Headers are rebuilt per attempt so a recovered token is used.
            response = await self._client.request(
                method,
                f"/rest/v1/{table}",
                json=json,
                params=params,
                headers=self._headers(prefer),
            )
            if response.status_code >= 400:
                raise _error_from_response(response)
            if not response.content:
                return []
            data = response.json()
            return data if isinstance(data, list) else [data]

        try:
            return await with_auth_retry(run, self._recover_session, context)
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{context}: {exc}") from exc
        except RemoteStoreError as exc:
            logger.error("%s: %s", context, exc.message)
            raise


__all__ = [
    "ChangeFeed",
    "RestRemoteStore",
    "row_to_entity",
]
