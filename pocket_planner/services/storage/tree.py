"""
Helpers for reading and writing a JSON-like tree by path.

Both store backends keep (part of) their data as nested dicts and
apply multi-path updates through these functions.
"""

import copy
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping

from pocket_planner.services.storage.interface import (
    SERVER_TIMESTAMP,
    TOMBSTONE,
    paths_overlap,
    split_path,
)


def normalize_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """
    Canonicalise paths and reject updates that write the same node twice.

    An update may not contain a path together with one of its
    ancestors - the result would depend on write order.
    """
    normalized: dict[str, Any] = {}
    for path, value in updates.items():
        key = "/".join(split_path(path))
        for other in normalized:
            if paths_overlap(key, other):
                raise ValueError(f"Overlapping paths in one update: {key!r} and {other!r}")
        normalized[key] = TOMBSTONE if value is None else value
    return normalized


def resolve_value(value: Any, timestamp: str) -> Any:
    """
    Turn a value into what is actually stored.

    SERVER_TIMESTAMP becomes `timestamp`; Decimals become strings;
    dates become ISO strings. Anything else non-JSON is a bug.
    """
    if value is TOMBSTONE:
        return TOMBSTONE
    if value is SERVER_TIMESTAMP:
        return timestamp
    if isinstance(value, Mapping):
        resolved = {}
        for key, child in value.items():
            if child is None or child is TOMBSTONE:
                continue
            resolved[str(key)] = resolve_value(child, timestamp)
        return resolved
    if isinstance(value, (list, tuple)):
        return [resolve_value(child, timestamp) for child in value]
    if isinstance(value, (str, int, float)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Cannot store value of type {type(value).__name__}")


def read_at(root: dict, segments: list[str]) -> Any:
    """Deep copy of the node at `segments`, or None."""
    node: Any = root
    for segment in segments:
        if not isinstance(node, dict) or segment not in node:
            return None
        node = node[segment]
    if node == {}:
        return None
    return copy.deepcopy(node)


def write_at(root: dict, segments: list[str], value: Any) -> None:
    """
    Set (or delete, for TOMBSTONE) the node at `segments` in place.

    Missing or non-dict intermediate nodes are replaced by dicts.
    Parents left empty by a delete are pruned.
    """
    if not segments:
        root.clear()
        if value is not TOMBSTONE:
            if not isinstance(value, dict):
                raise TypeError("Only a mapping can be written at the root")
            root.update(copy.deepcopy(value))
        return

    if value is TOMBSTONE:
        _delete_at(root, segments)
        return

    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        if not isinstance(child, dict):
            child = {}
            node[segment] = child
        node = child
    if isinstance(value, dict) and not value:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = copy.deepcopy(value)


def _delete_at(root: dict, segments: list[str]) -> None:
    trail = [root]
    node: Any = root
    for segment in segments[:-1]:
        node = node.get(segment) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            return
        trail.append(node)
    trail[-1].pop(segments[-1], None)

    # Prune now-empty parents, deepest first
    for depth in range(len(trail) - 1, 0, -1):
        if trail[depth]:
            break
        trail[depth - 1].pop(segments[depth - 1], None)
