"""Logging infrastructure.

Every module logs through ``logging.getLogger(__name__)`` and passes
structured context with ``extra={...}``. Applications opt into JSONL output:

    from consultant.infra.logging import setup_logging

    setup_logging()  # reads LOG_* environment variables
"""

from consultant.infra.logging.config import configure_logging, setup_logging
from consultant.infra.logging.formatters import JSONFormatter

__all__ = [
    "JSONFormatter",
    "configure_logging",
    "setup_logging",
]
