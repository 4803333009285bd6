"""Configuration watching: decode, validate and publish Consul KV config."""

from consultant.features.config.decoder import decode
from consultant.features.config.snapshot import ConfigSnapshot
from consultant.features.config.watcher import ConfigWatcher, PollOutcome

__all__ = [
    "ConfigSnapshot",
    "ConfigWatcher",
    "PollOutcome",
    "decode",
]
