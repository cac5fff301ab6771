"""Effective node configuration from containerlab's defaults/kinds/groups layers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


def _layer(topology: Mapping[str, Any], *path: str) -> Mapping[str, Any]:
    node: Any = topology
    for key in path:
        if not isinstance(node, Mapping):
            return {}
        node = node.get(key)
    return node if isinstance(node, Mapping) else {}


def resolve_inherited_config(
    topology: Mapping[str, Any] | None,
    group: str | None = None,
    kind: str | None = None,
) -> dict[str, Any]:
    """Merge ``defaults`` → ``kinds[kind]`` → ``groups[group]``.

    ``topology`` is the whole document as plain data (the mapping holding the
    ``topology:`` key). Each layer overwrites the keys of the previous one;
    nested values are replaced, not merged.
    """
    result: dict[str, Any] = {}
    if not topology:
        return result

    result.update(_layer(topology, "topology", "defaults"))
    if kind:
        result.update(_layer(topology, "topology", "kinds", kind))
    if group:
        result.update(_layer(topology, "topology", "groups", group))
    return result


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality; mapping key order is ignored, sequence order is not."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if set(a) != set(b):
            return False
        return all(deep_equal(a[key], b[key]) for key in sorted(a, key=str))
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (Mapping, list, tuple)) or isinstance(b, (Mapping, list, tuple)):
        return False
    return a == b
