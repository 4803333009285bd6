"""Prometheus metrics for Consul config watching and service lookup.

These metrics provide observability into the blocking KV poll loop, the
validate-and-publish cycle, and health queries used by the service locator.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

from consultant.infra.metrics.prometheus import DEFAULT_LATENCY_BUCKETS, REGISTRY

# ──────────────────────────────────────────────────────────────
# KV poll metrics
# ──────────────────────────────────────────────────────────────

consul_kv_polls_total = Counter(
    "consul_kv_polls_total",
    "Total blocking KV reads issued against Consul. "
    "Tracks whether each read returned data, timed out unchanged, or failed. "
    "Usage: Increment once per poll iteration.",
    ["outcome"],  # changed, unchanged, reset, failed
    registry=REGISTRY,
)

consul_config_updates_total = Counter(
    "consul_config_updates_total",
    "Total candidate configurations handled by the config watcher. "
    "Usage: Increment once per candidate with its final outcome.",
    ["outcome"],  # published, rejected, decode_error, unchanged
    registry=REGISTRY,
)

consul_subscriber_errors_total = Counter(
    "consul_subscriber_errors_total",
    "Total exceptions raised by on-valid-config subscribers. "
    "Usage: Increment for each subscriber that raises during notification.",
    registry=REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Error metrics
# ──────────────────────────────────────────────────────────────

consul_operation_errors_total = Counter(
    "consul_operation_errors_total",
    "Total errors during Consul API operations. "
    "Categorized by operation and error type for debugging. "
    "Usage: Increment when any Consul operation fails.",
    [
        "operation",
        "error_type",
    ],  # operation: kv_read/health/datacenters/register/deregister, error_type: timeout/connection/http_error/decode
    registry=REGISTRY,
)

# ──────────────────────────────────────────────────────────────
# Latency metrics
# ──────────────────────────────────────────────────────────────

consul_operation_duration_seconds = Histogram(
    "consul_operation_duration_seconds",
    "Duration of Consul API operations in seconds. "
    "Blocking KV reads include the time Consul held the request open. "
    "Usage: Observe duration of each Consul API call.",
    ["operation"],
    buckets=DEFAULT_LATENCY_BUCKETS,
    registry=REGISTRY,
)
