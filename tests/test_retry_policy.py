"""Tests for the reconciliation back-off policy."""

import random

import pytest

from chatsync.utils.retry import BackoffPolicy
from tests.conftest import make_settings


def test_default_schedule():
    policy = BackoffPolicy()

    assert policy.schedule() == [0.0, 1000.0, 2000.0]
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.0, 1000.0, 2000.0]


def test_delay_is_capped():
    policy = BackoffPolicy(max_attempts=6, base_delay_ms=1000, max_delay_ms=3000)

    assert policy.schedule() == [0.0, 1000.0, 2000.0, 3000.0, 3000.0, 3000.0]


def test_jitter_stays_within_bounds():
    policy = BackoffPolicy(jitter=0.5)
    rng = random.Random(7)

    for _ in range(50):
        delay = policy.delay_for(3, rng)
        assert 1000.0 <= delay <= 3000.0
    assert policy.delay_for(1, rng) == 0.0


def test_single_attempt_disables_retry():
    assert BackoffPolicy(max_attempts=1).schedule() == [0.0]


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"jitter": -0.1}, {"jitter": 1.1}])
def test_invalid_policy(kwargs):
    with pytest.raises(ValueError):
        BackoffPolicy(**kwargs)


def test_from_settings():
    policy = BackoffPolicy.from_settings(make_settings(retry_ceiling=4, backoff_base_ms=250, backoff_jitter=0.1))

    assert policy.max_attempts == 4
    assert policy.base_delay_ms == 250.0
    assert policy.jitter == 0.1
