"""Tests for environment-driven settings."""

import pytest

from chatsync.config import get_settings
from tests.conftest import make_settings


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "CHATSYNC_RETRY_CEILING",
        "CHATSYNC_BACKOFF_BASE_MS",
        "CHATSYNC_BACKOFF_MAX_MS",
        "CHATSYNC_BACKOFF_JITTER",
        "CHATSYNC_CONTEXT_FETCH_DEADLINE_MS",
        "CHATSYNC_STREAM_CHUNK_IDLE_MS",
        "CHATSYNC_STREAM_TOTAL_DEADLINE_MS",
        "CHATSYNC_NETWORK_SETTLE_MS",
        "CHATSYNC_BACKEND_URL",
        "CHATSYNC_BACKEND_ANON_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = get_settings()

    assert settings.testing is True
    assert settings.retry_ceiling == 3
    assert settings.backoff_base_ms == 1000
    assert settings.backoff_jitter == 0.0
    assert settings.context_fetch_deadline_ms == 10000
    assert settings.stream_chunk_idle_ms == 30000
    assert settings.stream_total_deadline_ms == 300000
    assert settings.network_settle_ms == 500


def test_environment_overrides(clean_env):
    clean_env.setenv("CHATSYNC_RETRY_CEILING", "5")
    clean_env.setenv("CHATSYNC_BACKOFF_JITTER", "0.25")
    clean_env.setenv("CHATSYNC_BACKEND_URL", "https://project.example.co/")

    settings = get_settings()

    assert settings.retry_ceiling == 5
    assert settings.backoff_jitter == 0.25
    assert settings.backend_url == "https://project.example.co"


def test_non_numeric_value_is_rejected(clean_env):
    clean_env.setenv("CHATSYNC_NETWORK_SETTLE_MS", "soon")

    with pytest.raises(ValueError, match="CHATSYNC_NETWORK_SETTLE_MS"):
        get_settings()


@pytest.mark.parametrize(
    "name, value",
    [
        ("CHATSYNC_RETRY_CEILING", "0"),
        ("CHATSYNC_BACKOFF_JITTER", "1.5"),
        ("CHATSYNC_STREAM_CHUNK_IDLE_MS", "0"),
        ("CHATSYNC_NETWORK_SETTLE_MS", "-1"),
    ],
)
def test_invalid_values_fail_fast(clean_env, name, value):
    clean_env.setenv(name, value)

    with pytest.raises(ValueError, match="Invalid chatsync configuration"):
        get_settings()


def test_override_validates():
    settings = make_settings()
    settings.override(retry_ceiling=4)
    assert settings.retry_ceiling == 4

    with pytest.raises(ValueError):
        settings.override(backoff_max_ms=10)

    with pytest.raises(AttributeError):
        settings.override(unknown_flag=True)
