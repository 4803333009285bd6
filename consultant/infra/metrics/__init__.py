"""Metrics infrastructure for Prometheus monitoring.

Expose the registry from the embedding application, e.g.:

    from prometheus_client import generate_latest
    from consultant.infra.metrics import REGISTRY

    payload = generate_latest(REGISTRY)
"""

from __future__ import annotations

from prometheus_client import generate_latest

from consultant.infra.metrics.prometheus import DEFAULT_LATENCY_BUCKETS, REGISTRY

__all__ = [
    "DEFAULT_LATENCY_BUCKETS",
    "REGISTRY",
    "generate_latest",
]
