"""Identity-stable, thread-safe view of the latest valid configuration."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping, MutableMapping


class ConfigSnapshot(MutableMapping[str, str]):
    """Mapping of property name to value that is updated in place.

    Consumers keep a single reference for the lifetime of the watcher and
    always read the latest published configuration through it. The contents
    are only ever swapped as a whole via replace(), under one lock that also
    guards every read, so no reader observes a half-written configuration.

    Item assignment and deletion are rejected: only the config watcher's
    publish step changes the contents.

    Example:
        properties = consultant.properties
        url = properties.get("database.url")
    """

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._lock = threading.RLock()
        self._data: dict[str, str] = dict(initial or {})

    def __getitem__(self, key: str) -> str:
        with self._lock:
            return self._data[key]

    def __setitem__(self, key: str, value: str) -> None:
        raise TypeError("ConfigSnapshot is read-only; it is updated by the config watcher")

    def __delitem__(self, key: str) -> None:
        raise TypeError("ConfigSnapshot is read-only; it is updated by the config watcher")

    def __iter__(self) -> Iterator[str]:
        # Iterate over a copy so a concurrent replace() cannot break iteration
        with self._lock:
            keys = list(self._data)
        return iter(keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._data

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return self.as_dict() == dict(other.items())
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ConfigSnapshot({self.as_dict()!r})"

    def get(self, key: str, default: str | None = None) -> str | None:
        with self._lock:
            return self._data.get(key, default)

    def get_property(self, key: str, default: str | None = None) -> str | None:
        """Alias of get() for callers used to a Properties-style API."""
        return self.get(key, default)

    def items(self):  # type: ignore[override]
        return self.as_dict().items()

    def values(self):  # type: ignore[override]
        return self.as_dict().values()

    def as_dict(self) -> dict[str, str]:
        """Consistent point-in-time copy of the contents."""
        with self._lock:
            return dict(self._data)

    copy = as_dict

    def replace(self, values: Mapping[str, str]) -> None:
        """Swap the contents for ``values`` atomically with respect to readers."""
        fresh = dict(values)
        with self._lock:
            self._data.clear()
            self._data.update(fresh)

    @property
    def lock(self) -> threading.RLock:
        """The lock guarding the contents.

        Hold it to perform several reads against one consistent version::

            with properties.lock:
                host = properties["db.host"]
                port = properties["db.port"]
        """
        return self._lock
