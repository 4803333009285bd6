"""Background watcher keeping a ConfigSnapshot in sync with Consul KV.

This module provides the ConfigWatcher that:
- Long-polls ``config/<service>/`` with X-Consul-Index blocking reads
- Decodes each changed response into a flat property mapping
- Runs the candidate through a caller-supplied validator
- Publishes accepted candidates into one identity-stable ConfigSnapshot
- Notifies on-valid-config subscribers after every publish

The watcher is designed to NEVER surface per-iteration failures:
- Transport, decode and validation failures are logged and counted
- The loop keeps polling until shutdown() is called
- Callers observe progress only through the snapshot and subscribers
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

from consultant.core.exceptions import ConfigDecodeError
from consultant.features.config.decoder import decode
from consultant.features.config.snapshot import ConfigSnapshot
from consultant.infra.discovery.metrics import (
    consul_config_updates_total,
    consul_kv_polls_total,
    consul_subscriber_errors_total,
)

if TYPE_CHECKING:
    from consultant.core.identity import ServiceIdentifier
    from consultant.infra.discovery.protocols import ConfigFetcherProtocol

logger = logging.getLogger(__name__)

ConfigCallback = Callable[[Mapping[str, str]], object]
ConfigValidator = Callable[[Mapping[str, str]], object]


class PollOutcome(str, Enum):
    """Result of a single poll iteration."""

    PUBLISHED = "published"
    UNCHANGED = "unchanged"
    FAILED = "failed"
    RESET = "reset"
    DECODE_ERROR = "decode_error"
    REJECTED = "rejected"
    STOPPED = "stopped"


def accept_all(config: Mapping[str, str]) -> None:
    """Default validator: every candidate is valid."""


class ConfigWatcher:
    """Polls Consul for configuration changes on a dedicated thread.

    Key behaviors:
    - Exactly one background thread fetches, validates, publishes and notifies
    - The snapshot returned by ``properties`` never changes identity
    - A rejected or undecodable candidate is discarded entirely
    - Subscriber errors are isolated per subscriber
    - shutdown() is synchronous and idempotent

    Example:
        watcher = ConfigWatcher(
            fetcher=ConsulClient(get_consul_settings()),
            identifier=ServiceIdentifier("oauth", "eu-central", "web-1", "master"),
            validator=check_required_keys,
            subscribers=[reload_pool],
        )
        watcher.start()
        watcher.wait_for_first_config(timeout=10)

        # ... application runs, reading watcher.properties ...

        watcher.shutdown()
    """

    def __init__(
        self,
        fetcher: ConfigFetcherProtocol,
        identifier: ServiceIdentifier,
        validator: ConfigValidator | None = None,
        subscribers: Iterable[ConfigCallback] = (),
        error_retry_delay: float = 1.0,
        error_retry_max_delay: float = 30.0,
    ) -> None:
        """Initialize the watcher without starting it.

        Args:
            fetcher: Blocking KV reader, usually a ConsulClient.
            identifier: Identity selecting the watched prefix and scoped keys.
            validator: Called with each decoded candidate; raising rejects it.
                Defaults to accepting everything.
            subscribers: Called with every published configuration, in order.
            error_retry_delay: Pause after the first failed poll; doubles for
                each consecutive failure. Time already spent in the failed
                fetch counts toward the pause, so a blocking read that timed
                out is retried at once.
            error_retry_max_delay: Cap for the pause between failed polls.
        """
        self._fetcher = fetcher
        self._identifier = identifier
        self._prefix = identifier.config_prefix
        self._validator = validator or accept_all
        self._subscribers: tuple[ConfigCallback, ...] = tuple(subscribers)
        self._error_retry_delay = error_retry_delay
        self._error_retry_max_delay = error_retry_max_delay

        self._snapshot = ConfigSnapshot()
        self._index = 0
        self._stop_event = threading.Event()
        self._published = threading.Event()
        self._publish_lock = threading.Lock()
        self._subscribers_lock = threading.Lock()
        self._thread: threading.Thread | None = None

        logger.debug(
            "ConfigWatcher initialized",
            extra={"prefix": self._prefix, "identity": str(identifier)},
        )

    # ──────────────────────────────────────────────────────────────
    # Accessors
    # ──────────────────────────────────────────────────────────────

    @property
    def properties(self) -> ConfigSnapshot:
        """The live configuration; empty until the first valid publish."""
        return self._snapshot

    @property
    def service_identifier(self) -> ServiceIdentifier:
        return self._identifier

    @property
    def last_index(self) -> int:
        """Last X-Consul-Index seen by the loop."""
        return self._index

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def subscribe(self, callback: ConfigCallback) -> None:
        """Add an on-valid-config subscriber."""
        with self._subscribers_lock:
            self._subscribers = (*self._subscribers, callback)

    # ──────────────────────────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background polling thread.

        Calling start() on a running watcher does nothing; a watcher that
        was shut down cannot be restarted.
        """
        if self._thread is not None:
            if self._stop_event.is_set():
                logger.warning(
                    "ConfigWatcher was shut down and cannot be restarted",
                    extra={"prefix": self._prefix},
                )
            return

        self._thread = threading.Thread(
            target=self._run,
            name=f"consultant-config-{self._identifier.service}",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "Config watcher started",
            extra={"prefix": self._prefix, "identity": str(self._identifier)},
        )

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop polling and wait for the background thread to exit.

        An in-flight blocking read is not interrupted; once this returns no
        further publish or notification happens. Safe to call repeatedly and
        from a subscriber running on the watcher thread.

        Args:
            timeout: Maximum seconds to wait for the thread; None waits for
                the current blocking read to complete.
        """
        with self._publish_lock:
            already_stopped = self._stop_event.is_set()
            self._stop_event.set()

        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(
                    "Config watcher thread did not stop in time",
                    extra={"prefix": self._prefix, "timeout": timeout},
                )

        if not already_stopped:
            logger.info("Config watcher stopped", extra={"prefix": self._prefix})

    def wait_for_first_config(self, timeout: float | None = None) -> bool:
        """Block until the first valid configuration was published.

        Returns:
            True once a configuration is available, False on timeout.
        """
        return self._published.wait(timeout)

    # ──────────────────────────────────────────────────────────────
    # Poll loop
    # ──────────────────────────────────────────────────────────────

    def retry_delay(self, failures: int) -> float:
        """Pause before the next poll after ``failures`` consecutive failures.

        Exponential backoff: ``error_retry_delay * 2 ** (failures - 1)``,
        capped at ``error_retry_max_delay``.
        """
        if failures <= 0 or self._error_retry_delay <= 0:
            return 0.0
        delay = self._error_retry_delay * (2 ** min(failures - 1, 32))
        return min(delay, self._error_retry_max_delay)

    def _run(self) -> None:
        failures = 0
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                outcome = self.poll_once()
            except Exception:
                logger.exception(
                    "Unexpected error in config watch loop",
                    extra={"prefix": self._prefix, "index": self._index},
                )
                outcome = PollOutcome.FAILED

            if outcome is not PollOutcome.FAILED:
                failures = 0
                continue

            failures += 1
            # A read that failed after blocking has already waited its share
            remaining = self.retry_delay(failures) - (time.monotonic() - started)
            if remaining > 0:
                logger.debug(
                    "Backing off after failed poll",
                    extra={"prefix": self._prefix, "failures": failures, "delay": round(remaining, 3)},
                )
                self._stop_event.wait(remaining)

    def poll_once(self) -> PollOutcome:
        """Run one fetch/decode/validate/publish/notify iteration.

        The background thread calls this in a loop; it is public so tests
        and single-threaded callers can drive the watcher step by step.
        """
        if self._stop_event.is_set():
            return PollOutcome.STOPPED

        response = self._fetcher.fetch_config(self._prefix, self._index)
        if response is None:
            consul_kv_polls_total.labels(outcome="failed").inc()
            return PollOutcome.FAILED

        if response.index == self._index:
            consul_kv_polls_total.labels(outcome="unchanged").inc()
            consul_config_updates_total.labels(outcome="unchanged").inc()
            return PollOutcome.UNCHANGED

        if response.index < self._index:
            # Consul's index went backwards (e.g. snapshot restore): start over
            logger.warning(
                "Consul index went backwards, resetting",
                extra={"prefix": self._prefix, "index": self._index, "new_index": response.index},
            )
            consul_kv_polls_total.labels(outcome="reset").inc()
            self._index = 0
            return PollOutcome.RESET

        consul_kv_polls_total.labels(outcome="changed").inc()
        # Advance even if the candidate is discarded so the next poll blocks for newer state
        self._index = response.index

        try:
            candidate = decode(response.entries, self._prefix, self._identifier)
        except ConfigDecodeError as e:
            consul_config_updates_total.labels(outcome="decode_error").inc()
            logger.warning(
                "Discarding undecodable configuration",
                extra={**e.extra, "prefix": self._prefix, "index": response.index, "error": e.detail},
            )
            return PollOutcome.DECODE_ERROR

        try:
            self._validator(MappingProxyType(candidate))
        except Exception as e:
            consul_config_updates_total.labels(outcome="rejected").inc()
            logger.warning(
                "Configuration rejected by validator",
                extra={"prefix": self._prefix, "index": response.index, "error": str(e)},
            )
            return PollOutcome.REJECTED

        with self._publish_lock:
            if self._stop_event.is_set():
                return PollOutcome.STOPPED
            self._snapshot.replace(candidate)
            self._published.set()

        consul_config_updates_total.labels(outcome="published").inc()
        logger.info(
            "Published new configuration",
            extra={"prefix": self._prefix, "index": response.index, "keys": len(candidate)},
        )

        self._notify(MappingProxyType(dict(candidate)), response.index)
        return PollOutcome.PUBLISHED

    def _notify(self, config: Mapping[str, str], index: int) -> None:
        with self._subscribers_lock:
            subscribers = self._subscribers

        for callback in subscribers:
            try:
                callback(config)
            except Exception:
                consul_subscriber_errors_total.inc()
                logger.exception(
                    "On-valid-config subscriber failed",
                    extra={
                        "prefix": self._prefix,
                        "index": index,
                        "subscriber": getattr(callback, "__qualname__", repr(callback)),
                    },
                )
