"""Produce the initial YAML for a new containerlab topology file."""

from __future__ import annotations

import re

import yaml

from clabtopo.config import DEFAULT_NODE_KIND, TOPOLOGY_SUFFIXES

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def topology_file_name(name: str) -> str:
    """``"My Lab"`` → ``"My-Lab.clab.yml"``; names already ending in a topology suffix are kept."""
    name = name.strip()
    if name.endswith(TOPOLOGY_SUFFIXES):
        return name
    slug = _UNSAFE_NAME_RE.sub("-", name).strip("-.") or "topology"
    return f"{slug}{TOPOLOGY_SUFFIXES[0]}"


def generate_clab_yaml(name: str, nodes: dict | None = None, links: list | None = None) -> str:
    """Return the YAML of a fresh topology: ``name`` plus empty ``nodes``/``links``.

    ``nodes`` maps node names to their properties; a node without a ``kind``
    gets the default one.
    """
    topo_nodes: dict[str, dict] = {}
    for node_name, cfg in (nodes or {}).items():
        node_cfg = {"kind": DEFAULT_NODE_KIND}
        node_cfg.update(cfg or {})
        topo_nodes[node_name] = node_cfg

    clab = {
        "name": name,
        "topology": {
            "nodes": topo_nodes,
            "links": list(links or []),
        },
    }

    return yaml.dump(clab, default_flow_style=False, sort_keys=False)
