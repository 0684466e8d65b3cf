"""Prometheus metrics for the sync layer.

The module bundles all collectors in one place so registration happens
exactly once per process.  Components simply ``from chatsync.metrics import
…`` and increment.
"""

from __future__ import annotations

from prometheus_client import Counter
from prometheus_client import Gauge

# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

write_attempts_total = Counter(
    "chatsync_write_attempts_total",
    "Remote write attempts made by the reconciler",
    labelnames=("outcome",),  # confirmed | failed
)

terminal_write_failures_total = Counter(
    "chatsync_terminal_write_failures_total",
    "Reconciliation runs that exhausted the retry ceiling",
)

events_routed_total = Counter(
    "chatsync_events_routed_total",
    "Realtime events handled by the message router",
    labelnames=("outcome",),  # applied | queued
)

subscription_errors_total = Counter(
    "chatsync_subscription_errors_total",
    "Realtime channels that entered the error state",
)

timeouts_total = Counter(
    "chatsync_timeouts_total",
    "Guarded calls that hit their deadline",
    labelnames=("operation",),
)

orphans_prevented_total = Counter(
    "chatsync_orphans_prevented_total",
    "Dependent writes aborted because the parent did not persist",
)

# ---------------------------------------------------------------------------
# Gauges (current state)
# ---------------------------------------------------------------------------

pending_writes = Gauge(
    "chatsync_pending_writes",
    "Local writes not yet confirmed by the remote store",
)
