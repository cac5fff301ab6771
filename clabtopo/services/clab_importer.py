"""Read-only summaries of topology files for listings."""

from pathlib import Path

import yaml

from clabtopo.config import TOPOLOGY_SUFFIXES


def is_topology_file(path: Path) -> bool:
    return path.is_file() and path.name.endswith(TOPOLOGY_SUFFIXES)


def summarize_clab(yaml_content: str) -> dict:
    """Return ``{name, nodes, links}`` counts; unreadable files give zero counts."""
    try:
        data = yaml.safe_load(yaml_content) or {}
    except yaml.YAMLError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    topology = data.get('topology') or {}
    if not isinstance(topology, dict):
        topology = {}
    nodes_raw = topology.get('nodes') or {}
    links_raw = topology.get('links') or []

    return {
        'name': data.get('name') or '',
        'nodes': len(nodes_raw) if isinstance(nodes_raw, dict) else 0,
        'links': len(links_raw) if isinstance(links_raw, list) else 0,
    }


def list_topologies(workdir: Path) -> list[dict]:
    """Summaries of every topology file directly under ``workdir``, sorted by file name."""
    if not workdir.is_dir():
        return []
    records = []
    for path in sorted(workdir.iterdir()):
        if not is_topology_file(path):
            continue
        summary = summarize_clab(path.read_text(encoding='utf-8'))
        summary['fileName'] = path.name
        records.append(summary)
    return records
