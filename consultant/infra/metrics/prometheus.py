"""Prometheus registry and shared buckets."""

from __future__ import annotations

from prometheus_client import CollectorRegistry

# Private registry so embedding applications decide whether to expose these metrics
REGISTRY = CollectorRegistry()

# Covers Consul API round trips from 1ms to 10s; blocking queries that are
# held open land in the +Inf bucket
DEFAULT_LATENCY_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
)
