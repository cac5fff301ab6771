"""Node add/edit/delete against a round-trip topology document.

Only the YAML tree is touched here; annotation side effects (positions,
rename/delete cascades) belong to the orchestrator.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from clabtopo.config import DEFAULT_NODE_KIND
from clabtopo.errors import ERROR_NODES_NOT_MAP
from clabtopo.schemas import NodeSaveData, Renamed, SaveResult
from clabtopo.services.inheritance import deep_equal, resolve_inherited_config
from clabtopo.services.yaml_document import (
    YamlDocument,
    block_style,
    is_map,
    is_seq,
    new_map,
    new_seq,
    to_node,
    to_plain,
)

log = logging.getLogger(__name__)

NODE_YAML_PROPERTIES = (
    "kind",
    "type",
    "image",
    "group",
    "startup-config",
    "enforce-startup-config",
    "suppress-startup-config",
    "license",
    "binds",
    "env",
    "env-files",
    "labels",
    "user",
    "entrypoint",
    "cmd",
    "exec",
    "restart-policy",
    "auto-remove",
    "startup-delay",
    "mgmt-ipv4",
    "mgmt-ipv6",
    "network-mode",
    "ports",
    "dns",
    "aliases",
    "memory",
    "cpu",
    "cpu-set",
    "shm-size",
    "cap-add",
    "sysctls",
    "devices",
    "certificate",
    "healthcheck",
    "image-pull-policy",
    "runtime",
    "components",
    "stages",
)


def _nodes_map(doc: YamlDocument, create: bool = False):
    """Return ``topology.nodes`` or None when it is not a map.

    With ``create`` an empty document gets its ``topology``/``nodes``/``links``
    containers; containers of the wrong shape are left alone.
    """
    if not create:
        nodes = doc.get_in(("topology", "nodes"))
        return nodes if is_map(nodes) else None
    try:
        nodes = doc.ensure_map(("topology", "nodes"))
    except TypeError:
        return None
    if doc.get_in(("topology", "links")) is None:
        doc.set_in(("topology", "links"), new_seq())
    return nodes


def _normalize(value: Any) -> Any:
    """Blank strings and empty collections count as "not set"."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (list, tuple, Mapping)) and not value:
        return None
    return value


def _create_node_map(props: Mapping[str, Any]):
    node_map = new_map()
    node_map["kind"] = _normalize(props.get("kind")) or DEFAULT_NODE_KIND
    for prop in NODE_YAML_PROPERTIES:
        if prop == "kind":
            continue
        value = _normalize(props.get(prop))
        if value is not None:
            node_map[prop] = to_node(value)
    return node_map


def _update_node_map(node_map, props: Mapping[str, Any], inherited: Mapping[str, Any]) -> None:
    for prop in NODE_YAML_PROPERTIES:
        value = _normalize(props.get(prop))
        if value is None or deep_equal(value, inherited.get(prop)):
            if prop in node_map:
                del node_map[prop]
            continue
        current = node_map.get(prop)
        if current is not None and deep_equal(to_plain(current), value):
            # Unchanged: keep the authored formatting.
            continue
        node_map[prop] = to_node(value)


# ── Link references ────────────────────────────────────────────────


def _endpoint_references_node(ep: Any, node_id: str) -> bool:
    if isinstance(ep, str):
        return ep == node_id or ep.startswith(f"{node_id}:")
    if is_map(ep):
        return ep.get("node") == node_id
    return False


def link_references_node(link: Any, node_id: str) -> bool:
    if not is_map(link):
        return False
    endpoints = link.get("endpoints")
    if is_seq(endpoints) and any(_endpoint_references_node(ep, node_id) for ep in endpoints):
        return True
    endpoint = link.get("endpoint")
    return is_map(endpoint) and endpoint.get("node") == node_id


def _same_style(original: str, value: str) -> str:
    # ScalarString subclasses carry the authored quoting.
    return type(original)(value) if type(original) is not str else value


def _renamed_endpoint(ep: str, old_id: str, new_id: str) -> str | None:
    if ep == old_id:
        return _same_style(ep, new_id)
    if ep.startswith(f"{old_id}:"):
        return _same_style(ep, f"{new_id}:{ep[len(old_id) + 1:]}")
    return None


def _rename_in_endpoint_map(ep: Any, old_id: str, new_id: str) -> bool:
    if is_map(ep) and ep.get("node") == old_id:
        ep["node"] = _same_style(ep["node"], new_id)
        return True
    return False


def update_links_for_rename(doc: YamlDocument, old_id: str, new_id: str) -> int:
    """Point every endpoint that referenced ``old_id`` at ``new_id``."""
    links = doc.get_in(("topology", "links"))
    if not is_seq(links):
        return 0

    updated = 0
    for link in links:
        if not is_map(link):
            continue
        endpoints = link.get("endpoints")
        if is_seq(endpoints):
            for i, ep in enumerate(endpoints):
                if isinstance(ep, str):
                    renamed = _renamed_endpoint(ep, old_id, new_id)
                    if renamed is not None:
                        endpoints[i] = renamed
                        updated += 1
                elif _rename_in_endpoint_map(ep, old_id, new_id):
                    updated += 1
        if _rename_in_endpoint_map(link.get("endpoint"), old_id, new_id):
            updated += 1
    return updated


def remove_links_for_node(doc: YamlDocument, node_id: str) -> int:
    links = doc.get_in(("topology", "links"))
    if not is_seq(links):
        return 0
    removed = 0
    # Delete back to front so comment bookkeeping stays aligned.
    for i in reversed(range(len(links))):
        if link_references_node(links[i], node_id):
            del links[i]
            removed += 1
    return removed


# ── Operations ─────────────────────────────────────────────────────


def add_node_to_doc(doc: YamlDocument, node_data: NodeSaveData) -> SaveResult:
    node_id = node_data.node_id
    if not node_id:
        return SaveResult.fail("Node must have a name or id")

    nodes = _nodes_map(doc, create=True)
    if nodes is None:
        return SaveResult.fail(ERROR_NODES_NOT_MAP)
    if node_id in nodes:
        return SaveResult.fail(f'Node "{node_id}" already exists')

    block_style(nodes)
    nodes[node_id] = _create_node_map(node_data.extraData.yaml_values())
    log.info("Added node: %s", node_id)
    return SaveResult.ok()


def _find_node_for_edit(nodes, original_id: str, new_name: str, is_rename: bool):
    """Return ``(node_map, early_result)``; exactly one of them is set."""
    if original_id in nodes:
        node_map = nodes[original_id]
        if not is_map(node_map):
            # `r1:` with no properties
            node_map = new_map()
            nodes[original_id] = node_map
        return node_map, None

    if is_rename:
        if new_name in nodes:
            log.info("Node %r not found but %r exists; rename already applied", original_id, new_name)
            return None, SaveResult.ok()
        return None, SaveResult.fail(f'Cannot rename: source node "{original_id}" not found')

    log.warning("Node %r not found, creating new node %r", original_id, new_name)
    block_style(nodes)
    node_map = new_map()
    nodes[new_name] = node_map
    return node_map, None


def edit_node_in_doc(
    doc: YamlDocument,
    node_data: NodeSaveData,
    topology: Mapping[str, Any] | None = None,
) -> SaveResult:
    """Update a node, located by its original id, and cascade a rename into links.

    ``topology`` is a plain snapshot of the document used to resolve inherited
    values; it is taken from ``doc`` when omitted.
    """
    original_id = node_data.id
    new_name = node_data.name or node_data.id
    if not original_id:
        return SaveResult.fail("Node must have an id")

    nodes = _nodes_map(doc)
    if nodes is None:
        return SaveResult.fail(ERROR_NODES_NOT_MAP)

    is_rename = new_name != original_id
    if is_rename and new_name in nodes and original_id in nodes:
        return SaveResult.fail(f'Cannot rename: node "{new_name}" already exists')

    node_map, early = _find_node_for_edit(nodes, original_id, new_name, is_rename)
    if early is not None:
        return early

    props = node_data.extraData.yaml_values()
    if topology is None:
        topology = doc.to_plain()
    inherited = resolve_inherited_config(topology, group=_normalize(props.get("group")), kind=_normalize(props.get("kind")))
    _update_node_map(node_map, props, inherited)

    if not is_rename:
        log.info("Updated node: %s", original_id)
        return SaveResult.ok()

    nodes[new_name] = node_map
    del nodes[original_id]
    count = update_links_for_rename(doc, original_id, new_name)
    log.info("Renamed node: %s -> %s (%d link endpoints updated)", original_id, new_name, count)
    return SaveResult.ok(renamed=Renamed(oldId=original_id, newId=new_name))


def delete_node_from_doc(doc: YamlDocument, node_id: str) -> SaveResult:
    nodes = _nodes_map(doc)
    if nodes is None:
        return SaveResult.fail(ERROR_NODES_NOT_MAP)
    if node_id not in nodes:
        return SaveResult.fail(f'Node "{node_id}" not found')

    del nodes[node_id]
    removed = remove_links_for_node(doc, node_id)
    log.info("Deleted node: %s (%d links removed)", node_id, removed)
    return SaveResult.ok()
