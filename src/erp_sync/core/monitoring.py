"""Prometheus metrics for sync runs and ERP calls.

Provides:
- erp_requests_total / erp_request_duration_seconds: one sample per gateway attempt
- sync_entities_total: per-entity reconciliation outcomes
- track_erp_call(): Context manager recording attempt outcome and duration
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Gauge, Histogram

# ── ERP Call Metrics ─────────────────────────────────────────────────────────

erp_requests_total = Counter(
    "erp_requests_total",
    "Total ERP gateway attempts",
    ["operation", "outcome"],
)

erp_request_duration_seconds = Histogram(
    "erp_request_duration_seconds",
    "ERP gateway attempt duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_entities_total = Counter(
    "sync_entities_total",
    "Entities reconciled by the sync orchestrator",
    ["entity_type", "direction", "outcome"],
)

sync_runs_in_progress = Gauge(
    "sync_runs_in_progress",
    "Batch sync runs currently executing",
)


@contextmanager
def track_erp_call(operation: str) -> Iterator[None]:
    """Record the outcome and duration of one ERP attempt."""
    start = time.monotonic()
    outcome = "success"
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        erp_request_duration_seconds.labels(operation=operation).observe(
            time.monotonic() - start
        )
        erp_requests_total.labels(operation=operation, outcome=outcome).inc()
