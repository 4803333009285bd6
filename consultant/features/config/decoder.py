"""Decoding of Consul KV entries into a flat property mapping.

Keys below the watched prefix become property names with the prefix
stripped::

    config/oauth/some.key                      -> some.key

A key may be scoped to part of the fleet with a selector directly after the
prefix. Scoped keys only apply to processes whose identity matches every
selector, and the most specific matching key wins::

    config/oauth/[dc=eu-central].some.key                  -> some.key
    config/oauth/[dc=eu-central,host=web-1].some.key       -> some.key
    config/oauth/[dc=eu-central,host=web-1,instance=master].some.key
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING, Any

from consultant.core.exceptions import ConfigDecodeError

if TYPE_CHECKING:
    from consultant.core.identity import ServiceIdentifier

SELECTOR_FIELDS = {
    "dc": "datacenter",
    "host": "host",
    "instance": "instance",
}


def parse_selectors(raw: str, key: str) -> dict[str, str]:
    """Parse ``dc=eu-central,host=web-1`` into ``{"dc": ..., "host": ...}``.

    Raises:
        ConfigDecodeError: If a selector is malformed, unknown or repeated.
    """
    selectors: dict[str, str] = {}
    for part in raw.split(","):
        name, sep, value = part.partition("=")
        name, value = name.strip(), value.strip()
        if not sep or not name or not value:
            raise ConfigDecodeError(
                detail=f"Malformed selector '{part}'",
                extra={"key": key},
            )
        if name not in SELECTOR_FIELDS:
            raise ConfigDecodeError(
                detail=f"Unknown selector '{name}'",
                extra={"key": key, "allowed": sorted(SELECTOR_FIELDS)},
            )
        if name in selectors:
            raise ConfigDecodeError(
                detail=f"Selector '{name}' given twice",
                extra={"key": key},
            )
        selectors[name] = value
    return selectors


def split_key(relative_key: str, key: str) -> tuple[dict[str, str], str]:
    """Split a prefix-stripped key into its selectors and property name."""
    if not relative_key.startswith("["):
        return {}, relative_key

    end = relative_key.find("]")
    if end < 0:
        raise ConfigDecodeError(detail="Unterminated selector", extra={"key": key})

    selectors = parse_selectors(relative_key[1:end], key)
    name = relative_key[end + 1 :]
    if name.startswith("."):
        name = name[1:]
    if not name:
        raise ConfigDecodeError(detail="Scoped key has no property name", extra={"key": key})
    return selectors, name


def matches(selectors: dict[str, str], identifier: ServiceIdentifier | None) -> bool:
    """Check whether every selector matches the identifier."""
    if not selectors:
        return True
    if identifier is None:
        return False
    return all(
        getattr(identifier, SELECTOR_FIELDS[name]) == value
        for name, value in selectors.items()
    )


def decode_value(entry: dict[str, Any], key: str) -> str | None:
    """Decode one base64 KV value as UTF-8; None for value-less keys."""
    raw = entry.get("Value")
    if raw is None:
        return None
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, TypeError) as e:
        raise ConfigDecodeError(
            detail="Value is not valid base64-encoded UTF-8",
            extra={"key": key, "error": str(e)},
        ) from e


def decode(
    entries: list[dict[str, Any]],
    prefix: str,
    identifier: ServiceIdentifier | None = None,
) -> dict[str, str]:
    """Turn raw KV entries into a flat key -> value mapping.

    Args:
        entries: Entries as returned by ``GET /v1/kv/<prefix>?recurse``.
        prefix: Watched prefix, stripped from every key.
        identifier: Identity used to resolve scoped keys; scoped keys are
            ignored when None.

    Returns:
        Property mapping with the prefix stripped.

    Raises:
        ConfigDecodeError: If an entry or value is malformed.
    """
    resolved: dict[str, tuple[int, str]] = {}

    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("Key"), str):
            raise ConfigDecodeError(
                detail="KV entry has no key",
                extra={"entry": repr(entry)[:200]},
            )

        key = entry["Key"]
        if not key.startswith(prefix) or key.endswith("/"):
            continue

        value = decode_value(entry, key)
        if value is None:
            continue

        selectors, name = split_key(key[len(prefix) :], key)
        if not matches(selectors, identifier):
            continue

        specificity = len(selectors)
        current = resolved.get(name)
        if current is None or specificity >= current[0]:
            resolved[name] = (specificity, value)

    return {name: value for name, (_, value) in resolved.items()}
