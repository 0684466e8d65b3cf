"""FastAPI application exposing the sync layer's health surface.

The app does not own the sync engine's collaborators: callers build a
:class:`~chatsync.sync.engine.SyncEngine` (production adapters or test
doubles) and hand it to :func:`create_app`, which starts it on startup and
shuts it down on exit.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Iterable
from typing import Optional

from fastapi import FastAPI

from chatsync.config import Settings
from chatsync.config import get_settings
from chatsync.constants import API_PREFIX
from chatsync.routers.health import router as health_router
from chatsync.routers.metrics import router as metrics_router
from chatsync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)

DEFAULT_TOPICS = ("chats", "messages", "folders")


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Apply ``LOG_LEVEL`` to the root logger and the ``chatsync`` package.

    ``basicConfig`` is a no-op once the root logger has handlers (e.g. under
    a test runner or an embedding host), so the package logger level is set
    directly as well.
    """

    settings = settings or get_settings()
    level = getattr(logging, settings.log_level.upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s - %(name)s - %(message)s", handlers=[logging.StreamHandler()])
    logging.getLogger("chatsync").setLevel(level)


def create_app(engine: SyncEngine, topics: Iterable[str] = DEFAULT_TOPICS) -> FastAPI:
    """Build the HTTP app around an existing *engine*."""

    configure_logging(engine.settings)
    topics = tuple(topics)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the engine with the app and stop it on shutdown."""
        await engine.start(topics)
        logger.info("Sync engine watching %s", ", ".join(topics) or "no topics")

        yield  # Application is running

        try:
            await engine.shutdown()
        except Exception as e:
            logger.error(f"Error during sync engine shutdown: {e}")

    app = FastAPI(redirect_slashes=True, lifespan=lifespan)
    app.state.sync_engine = engine

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(metrics_router)  # no prefix – Prometheus expects /metrics

    @app.get("/")
    async def read_root():
        """Return a simple message to indicate the API is working."""
        return {"message": "chatsync is running"}

    return app


__all__ = [
    "configure_logging",
    "create_app",
]
