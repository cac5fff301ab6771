"""Link add/edit/delete against a round-trip topology document.

A link's identity is its canonical key: the two endpoint strings
(``node`` or ``node:interface``) sorted and joined with ``|``. Links of a
single-endpoint type (host, mgmt-net, ...) use the type name as the implicit
second endpoint, so two ``host`` links on the same interface collide while a
``host`` and a ``macvlan`` link on that interface do not.
"""

from __future__ import annotations

import logging
from typing import Any

from clabtopo.errors import ERROR_LINKS_NOT_SEQ, ERROR_TOPOLOGY_NOT_MAP
from clabtopo.schemas import LinkExtraData, LinkSaveData, SaveResult
from clabtopo.services.yaml_document import (
    YamlDocument,
    block_style,
    is_map,
    is_seq,
    new_map,
    new_seq,
    quoted,
    to_node,
)

log = logging.getLogger(__name__)

DEFAULT_LINK_TYPE = "veth"
SINGLE_ENDPOINT_TYPES = frozenset({"host", "mgmt-net", "macvlan", "vxlan", "vxlan-stitch", "dummy"})
_VXLAN_TYPES = frozenset({"vxlan", "vxlan-stitch"})

# Extended-only fields; any of them set forces the extended format.
_EXTENDED_SCALARS = (
    "extMtu",
    "extSourceMac",
    "extTargetMac",
    "extHostInterface",
    "extMode",
    "extRemote",
    "extVni",
    "extDstPort",
    "extSrcPort",
)


def endpoint_string(node: str, interface: str | None = None) -> str:
    return f"{node}:{interface}" if interface else node


def canonical_link_key(
    source: str,
    source_endpoint: str | None,
    target: str,
    target_endpoint: str | None,
    link_type: str | None = None,
) -> str:
    src = endpoint_string(source, source_endpoint)
    if link_type in SINGLE_ENDPOINT_TYPES:
        dst = link_type
    else:
        dst = endpoint_string(target, target_endpoint)
    return "|".join(sorted((src, dst)))


def link_key(link_data: LinkSaveData) -> str:
    return canonical_link_key(
        link_data.source,
        link_data.sourceEndpoint,
        link_data.target,
        link_data.targetEndpoint,
        link_data.link_type,
    )


def lookup_key(link_data: LinkSaveData) -> str:
    """Key of the link an edit replaces (the original identity when given)."""
    source_endpoint = link_data.sourceEndpoint
    if link_data.originalSourceEndpoint is not None:
        source_endpoint = link_data.originalSourceEndpoint
    target_endpoint = link_data.targetEndpoint
    if link_data.originalTargetEndpoint is not None:
        target_endpoint = link_data.originalTargetEndpoint
    return canonical_link_key(
        link_data.originalSource or link_data.source,
        source_endpoint,
        link_data.originalTarget or link_data.target,
        target_endpoint,
        link_data.originalType or link_data.link_type,
    )


def _yaml_endpoint_string(ep: Any) -> str | None:
    if isinstance(ep, str):
        return str(ep)
    if is_map(ep) and ep.get("node") is not None:
        return endpoint_string(str(ep["node"]), str(ep["interface"]) if ep.get("interface") else None)
    return None


def yaml_link_key(link: Any) -> str | None:
    """Canonical key of an authored link entry, brief or extended."""
    if not is_map(link):
        return None

    endpoints: list[str] = []
    seq = link.get("endpoints")
    if is_seq(seq):
        endpoints.extend(ep for ep in map(_yaml_endpoint_string, seq) if ep)
    single = _yaml_endpoint_string(link.get("endpoint"))
    if single:
        endpoints.append(single)

    if not endpoints:
        return None
    link_type = link.get("type")
    if len(endpoints) == 1 and link_type:
        endpoints.append(str(link_type))
    return "|".join(sorted(endpoints))


def has_extended_properties(link_data: LinkSaveData) -> bool:
    extra = link_data.extraData
    if any(getattr(extra, name) not in (None, "") for name in _EXTENDED_SCALARS):
        return True
    if extra.extVars or extra.extLabels:
        return True
    return link_data.link_type != DEFAULT_LINK_TYPE


# ── Entry construction ─────────────────────────────────────────────


def _set_if(link_map, key: str, value: Any) -> None:
    if value is None or value == "" or value == {}:
        return
    link_map[key] = to_node(value)


def _endpoint_map(node: str, interface: str | None, mac: str | None):
    ep = new_map()
    ep["node"] = quoted(node)
    if interface:
        ep["interface"] = quoted(interface)
    if mac:
        ep["mac"] = mac
    return ep


def create_brief_link(link_data: LinkSaveData):
    """``endpoints: ["a:e1", "b:e1"]``"""
    link_map = new_map()
    endpoints = new_seq(flow=True)
    endpoints.append(quoted(endpoint_string(link_data.source, link_data.sourceEndpoint)))
    endpoints.append(quoted(endpoint_string(link_data.target, link_data.targetEndpoint)))
    link_map["endpoints"] = endpoints
    return link_map


def _apply_single_endpoint_fields(link_map, link_type: str, extra: LinkExtraData) -> None:
    _set_if(link_map, "host-interface", extra.extHostInterface)
    if link_type == "macvlan":
        _set_if(link_map, "mode", extra.extMode)
    if link_type in _VXLAN_TYPES:
        _set_if(link_map, "remote", extra.extRemote)
        _set_if(link_map, "vni", extra.extVni)
        _set_if(link_map, "dst-port", extra.extDstPort)
        _set_if(link_map, "src-port", extra.extSrcPort)


def create_extended_link(link_data: LinkSaveData):
    extra = link_data.extraData
    link_type = link_data.link_type

    link_map = new_map()
    link_map["type"] = link_type
    if link_type in SINGLE_ENDPOINT_TYPES:
        link_map["endpoint"] = _endpoint_map(link_data.source, link_data.sourceEndpoint, extra.extSourceMac)
        _apply_single_endpoint_fields(link_map, link_type, extra)
    else:
        endpoints = new_seq()
        endpoints.append(_endpoint_map(link_data.source, link_data.sourceEndpoint, extra.extSourceMac))
        endpoints.append(_endpoint_map(link_data.target, link_data.targetEndpoint, extra.extTargetMac))
        link_map["endpoints"] = endpoints

    _set_if(link_map, "mtu", extra.extMtu)
    _set_if(link_map, "vars", extra.extVars)
    _set_if(link_map, "labels", extra.extLabels)
    return link_map


def build_link(link_data: LinkSaveData):
    if has_extended_properties(link_data):
        return create_extended_link(link_data)
    return create_brief_link(link_data)


# ── Operations ─────────────────────────────────────────────────────


def _links_seq(doc: YamlDocument, create: bool = False):
    """Return ``(links, error)``."""
    links = doc.get_in(("topology", "links"))
    if links is None and create:
        topology = doc.get_in(("topology",))
        if not is_map(topology):
            return None, ERROR_TOPOLOGY_NOT_MAP
        links = new_seq()
        topology["links"] = links
    if not is_seq(links):
        return None, ERROR_LINKS_NOT_SEQ
    return links, None


def _describe(link_data: LinkSaveData) -> str:
    src = endpoint_string(link_data.source, link_data.sourceEndpoint)
    if link_data.link_type in SINGLE_ENDPOINT_TYPES:
        return f"{src} <-> {link_data.link_type}"
    return f"{src} <-> {endpoint_string(link_data.target, link_data.targetEndpoint)}"


def add_link_to_doc(doc: YamlDocument, link_data: LinkSaveData) -> SaveResult:
    links, error = _links_seq(doc, create=True)
    if error:
        return SaveResult.fail(error)

    new_key = link_key(link_data)
    if any(yaml_link_key(item) == new_key for item in links):
        return SaveResult.fail("Link already exists")

    block_style(links)
    links.append(build_link(link_data))
    log.info("Added link: %s", _describe(link_data))
    return SaveResult.ok()


def edit_link_in_doc(doc: YamlDocument, link_data: LinkSaveData) -> SaveResult:
    """Replace the whole entry; per-type fields never survive a type change."""
    links, error = _links_seq(doc)
    if error:
        return SaveResult.fail(error)

    key = lookup_key(link_data)
    new_key = link_key(link_data)
    log.debug("Looking for link with key: %s", key)
    keys = [yaml_link_key(item) for item in links]
    if new_key != key and new_key in keys:
        return SaveResult.fail("Link already exists")

    for i, existing in enumerate(keys):
        if existing == key:
            links[i] = build_link(link_data)
            log.info("Updated link at index %d: %s", i, _describe(link_data))
            return SaveResult.ok()

    return SaveResult.fail(f"Link not found (lookup key: {key})")


def delete_link_from_doc(doc: YamlDocument, link_data: LinkSaveData) -> SaveResult:
    links, error = _links_seq(doc)
    if error:
        return SaveResult.fail(error)

    key = link_key(link_data)
    removed = 0
    for i in reversed(range(len(links))):
        if yaml_link_key(links[i]) == key:
            del links[i]
            removed += 1

    if not removed:
        return SaveResult.fail("Link not found")
    log.info("Deleted link: %s", _describe(link_data))
    return SaveResult.ok()


# ── Network nodes ──────────────────────────────────────────────────

# Network nodes other than host ones are numbered by the editor, so any
# id with the right prefix belongs to every link of that type.
_NETWORK_NODE_PREFIXES = {
    "mgmt-net": "mgmt-net:",
    "macvlan": "macvlan:",
    "vxlan": "vxlan:",
    "vxlan-stitch": "vxlan-stitch:",
    "dummy": "dummy",
}


def link_matches_network_node(link: Any, node_id: str) -> bool:
    """True when ``link`` realises the network node ``node_id`` (``host:eth0``, ``vxlan:vxlan0``...)."""
    if not is_map(link) or not link.get("type"):
        return False
    link_type = str(link["type"])
    if link_type == "host":
        host_interface = link.get("host-interface")
        return bool(host_interface) and node_id == f"host:{host_interface}"
    prefix = _NETWORK_NODE_PREFIXES.get(link_type)
    return prefix is not None and node_id.startswith(prefix)


def remove_network_node_links(doc: YamlDocument, node_id: str) -> int:
    links = doc.get_in(("topology", "links"))
    if not is_seq(links):
        return 0
    removed = 0
    for i in reversed(range(len(links))):
        if link_matches_network_node(links[i], node_id):
            del links[i]
            removed += 1
    if removed:
        log.info("Deleted %d links for network node: %s", removed, node_id)
    return removed
