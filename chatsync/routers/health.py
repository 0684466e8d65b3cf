"""Sync health endpoint.

Reports what the UI needs to render a degraded-state banner: connectivity,
realtime channel states, unconfirmed writes (and which of them exhausted
their retries) and events parked for unfocused chats.
"""

from __future__ import annotations

from typing import Any
from typing import Dict

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import Request
from fastapi import status

from chatsync.constants import SYNC_PREFIX
from chatsync.sync.engine import SyncEngine

router = APIRouter(prefix=SYNC_PREFIX, tags=["sync"])


def get_sync_engine(request: Request) -> SyncEngine:
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync engine not initialised")
    return engine


@router.get("/health")
async def sync_health(engine: SyncEngine = Depends(get_sync_engine)) -> Dict[str, Any]:
    """Snapshot of the sync layer's health."""
    return engine.health()


@router.post("/groups/{group_id}/retry")
async def retry_group(group_id: str, engine: SyncEngine = Depends(get_sync_engine)) -> Dict[str, Any]:
    """Manual retry of a group's unconfirmed writes."""
    confirmed = await engine.retry(group_id)
    return {"group_id": group_id, "confirmed": confirmed, "pending": engine.pending.count(group_id)}
