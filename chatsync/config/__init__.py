"""Centralised configuration helper.

Exposes a :class:`Settings` container populated from environment variables
(retrieved via :func:`get_settings`) so the sync layer never reads
``os.getenv`` at call sites.  A project ``.env`` is loaded with
*python-dotenv* before the environment is read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

# ``_REPO_ROOT`` points at the directory that contains the ``chatsync``
# package (``chatsync/config/__init__.py`` -> parents[2]).

_REPO_ROOT = Path(__file__).resolve().parents[2]


def _truthy(value: str | None) -> bool:  # noqa: D401 – small helper
    """Return *True* when *value* looks like an affirmative string."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass
class Settings:  # noqa: D401 – simple data container
    """Lightweight settings container populated from environment variables."""

    # Runtime flags -----------------------------------------------------
    testing: bool
    log_level: str

    # Reconciliation policy ---------------------------------------------
    retry_ceiling: int
    backoff_base_ms: int
    backoff_max_ms: int
    backoff_jitter: float

    # Deadlines ---------------------------------------------------------
    context_fetch_deadline_ms: int
    stream_chunk_idle_ms: int
    stream_total_deadline_ms: int

    # Connectivity ------------------------------------------------------
    network_settle_ms: int

    # Managed backend ---------------------------------------------------
    backend_url: str
    backend_anon_key: str

    # Helper for tests to override values at runtime -------------------
    def override(self, **kwargs: Any) -> None:
        for key, value in kwargs.items():
            if not hasattr(self, key):
                raise AttributeError(f"Settings has no attribute '{key}'")
            setattr(self, key, value)
        _validate(self)


# ---------------------------------------------------------------------------
# Loading & validation
# ---------------------------------------------------------------------------


def _load_settings() -> Settings:  # noqa: D401 – helper
    """Populate :class:`Settings` from environment variables."""

    env_path = _REPO_ROOT / ".env"
    if env_path.exists():
        # Explicit process environment wins over the file.
        load_dotenv(env_path, override=False)

    return Settings(
        testing=_truthy(os.getenv("TESTING")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        retry_ceiling=_int_env("CHATSYNC_RETRY_CEILING", 3),
        backoff_base_ms=_int_env("CHATSYNC_BACKOFF_BASE_MS", 1000),
        backoff_max_ms=_int_env("CHATSYNC_BACKOFF_MAX_MS", 30000),
        backoff_jitter=_float_env("CHATSYNC_BACKOFF_JITTER", 0.0),
        context_fetch_deadline_ms=_int_env("CHATSYNC_CONTEXT_FETCH_DEADLINE_MS", 10000),
        stream_chunk_idle_ms=_int_env("CHATSYNC_STREAM_CHUNK_IDLE_MS", 30000),
        stream_total_deadline_ms=_int_env("CHATSYNC_STREAM_TOTAL_DEADLINE_MS", 300000),
        network_settle_ms=_int_env("CHATSYNC_NETWORK_SETTLE_MS", 500),
        backend_url=os.getenv("CHATSYNC_BACKEND_URL", "").rstrip("/"),
        backend_anon_key=os.getenv("CHATSYNC_BACKEND_ANON_KEY", ""),
    )


def _validate(settings: Settings) -> None:  # noqa: D401 – helper
    """Fail fast on values the sync layer cannot work with."""

    problems = []

    if settings.retry_ceiling < 1:
        problems.append("CHATSYNC_RETRY_CEILING must be >= 1")
    if settings.backoff_base_ms < 0:
        problems.append("CHATSYNC_BACKOFF_BASE_MS must be >= 0")
    if settings.backoff_max_ms < settings.backoff_base_ms:
        problems.append("CHATSYNC_BACKOFF_MAX_MS must be >= CHATSYNC_BACKOFF_BASE_MS")
    if not 0.0 <= settings.backoff_jitter <= 1.0:
        problems.append("CHATSYNC_BACKOFF_JITTER must be within [0, 1]")
    for name in ("context_fetch_deadline_ms", "stream_chunk_idle_ms", "stream_total_deadline_ms"):
        if getattr(settings, name) <= 0:
            problems.append(f"CHATSYNC_{name.upper()} must be > 0")
    if settings.network_settle_ms < 0:
        problems.append("CHATSYNC_NETWORK_SETTLE_MS must be >= 0")

    if problems:
        raise ValueError("Invalid chatsync configuration: " + "; ".join(problems))


def get_settings() -> Settings:  # noqa: D401 – public accessor
    """Return :class:`Settings` instance loaded from environment."""

    settings = _load_settings()
    _validate(settings)
    return settings


__all__ = [
    "Settings",
    "get_settings",
]
