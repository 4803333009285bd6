"""JSON Lines formatter for consultant log records.

Every record becomes one JSON object on one line. The Consul context that
consultant passes with ``extra={...}`` (watched prefix, blocking index,
service name and so on) is lifted to top-level fields in a fixed order, so
a watcher line and a client line for the same prefix can be joined without
knowing which module wrote them.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

# Consul context emitted right after the core fields, in this order
CONTEXT_FIELDS = (
    "identity",
    "prefix",
    "index",
    "new_index",
    "keys",
    "service_name",
    "service_id",
    "datacenter",
    "path",
    "status_code",
    "error",
)

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", (), None))
) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record with trace correlation.

    Field order: ``timestamp``, ``level``, ``logger``, ``message``,
    ``thread``, then ``trace_id``/``span_id`` when a span is active, then
    the Consul context fields that are present, then static fields and any
    other ``extra`` values. Exceptions add ``error_type`` and ``exception``.

    Example output:
        ```json
        {"timestamp": "2025-01-01T00:00:00.123Z", "level": "INFO", "logger": "consultant.features.config.watcher", "message": "Published new configuration", "thread": "consultant-config-oauth", "prefix": "config/oauth/", "index": 1001, "keys": 12}
        ```
    """

    def __init__(self, static: dict[str, Any] | None = None) -> None:
        """Initialize JSON formatter.

        Args:
            static: Fields added to every record, e.g. {"service": "oauth"}.
        """
        super().__init__()
        self.static = static or {}

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        ctx = trace.get_current_span().get_span_context()
        if ctx.is_valid:
            data["trace_id"] = format(ctx.trace_id, "032x")
            data["span_id"] = format(ctx.span_id, "016x")

        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRIBUTES}
        for key in CONTEXT_FIELDS:
            if key in extra:
                data[key] = extra.pop(key)

        for key, value in (*self.static.items(), *extra.items()):
            data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["error_type"] = record.exc_info[0].__name__
            data["exception"] = self.formatException(record.exc_info)

        # json.dumps escapes the traceback's newlines, keeping one line per record
        return json.dumps(data, ensure_ascii=False, default=str)
