"""
Prometheus metrics for the escrow staging pipeline

Tracks deposit outcomes, mapper fan-out, reducer latency, cursor lag and
retry/lock contention.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

REGISTRY = CollectorRegistry()


# =======================
# DEPOSIT METRICS
# =======================

deposits_total = Counter(
    name="escrow_deposits_total",
    documentation="Reduce outcomes per deposit",
    labelnames=["tld", "mode", "status"],  # status: COMPLETED, ALREADY_COMPLETED, LOCKED, FAILED
    registry=REGISTRY,
)

reduce_duration_seconds = Histogram(
    name="escrow_reduce_duration_seconds",
    documentation="Time spent staging a single deposit",
    labelnames=["mode"],
    buckets=[0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0, 900.0, 3600.0],
    registry=REGISTRY,
)

deposit_size_bytes = Histogram(
    name="escrow_deposit_size_bytes",
    documentation="Plaintext size of staged deposit documents",
    labelnames=["mode"],
    buckets=[1e3, 1e4, 1e5, 1e6, 1e7, 1e8, 1e9],
    registry=REGISTRY,
)

# =======================
# MAPPER METRICS
# =======================

snapshots_emitted_total = Counter(
    name="escrow_snapshots_emitted_total",
    documentation="Point-in-time snapshots emitted by map tasks",
    labelnames=["mode"],
    registry=REGISTRY,
)

shards_mapped_total = Counter(
    name="escrow_shards_mapped_total",
    documentation="Map tasks completed",
    labelnames=["shard_type"],  # shard_type: index, null
    registry=REGISTRY,
)

# =======================
# CURSOR / LOCK METRICS
# =======================

cursor_lag_seconds = Gauge(
    name="escrow_cursor_lag_seconds",
    documentation="Age of the next pending watermark per cursor",
    labelnames=["tld", "cursor_type"],
    registry=REGISTRY,
)

lock_contention_total = Counter(
    name="escrow_lock_contention_total",
    documentation="Reduce invocations that found the deposit lock held",
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="escrow_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)

task_retries_total = Counter(
    name="escrow_task_retries_total",
    documentation="Task re-executions after a transient failure",
    labelnames=["stage"],  # stage: map, reduce
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render all metrics in Prometheus text format"""
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager timing a block into a histogram

    Usage:
        with track_duration(reduce_duration_seconds, mode="FULL"):
            ...
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    if labels:
        counter.labels(**labels).inc(value)
    else:
        counter.inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def record_reduce_outcome(tld: str, mode: str, status: str) -> None:
    """Count one reducer outcome."""
    increment_counter(deposits_total, 1, tld=tld, mode=mode, status=status)


def record_error(error_type: str, component: str) -> None:
    increment_counter(errors_total, 1, error_type=error_type, component=component)
