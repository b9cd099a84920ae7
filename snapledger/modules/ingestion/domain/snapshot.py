"""
Canonical snapshot types.

A converter turns one raw provider item into a ``CanonicalSnapshot``; the diff
engine compares it against a ``ResourceState`` loaded from the current tables.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping


@dataclass(frozen=True)
class CanonicalSnapshot:
    """One resource instance as fetched in one run."""

    resource_id: str
    attributes: Mapping[str, Any]
    collected_at: datetime
    children: Mapping[str, list[dict[str, Any]]] = field(default_factory=dict)


@dataclass(frozen=True)
class ResourceState:
    """Plain view of a stored current record and its current child rows."""

    resource_id: str
    attributes: Mapping[str, Any]
    collected_at: datetime
    first_collected_at: datetime
    children: Mapping[str, list[dict[str, Any]]] = field(default_factory=dict)


def normalize_blob(value: Any) -> Any:
    """
    Canonical JSON form of a nested structure.

    Sorts keys and coerces to JSON-native types (tuples to lists, non-string
    keys to strings, unknown objects to their ``str``), so the value compares
    equal to what a JSON column gives back after a round trip. ``None`` stays
    ``None`` and is stored as SQL NULL.
    """
    if value is None:
        return None
    return json.loads(json.dumps(value, sort_keys=True, default=str))


def blob_key(value: Any) -> str:
    """Hashable, order-stable key for a scalar or blob value."""
    if isinstance(value, (bytes, bytearray)):
        return "b:" + bytes(value).hex()
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
