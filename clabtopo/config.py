import os
from pathlib import Path

CLAB_WORKDIR = Path(os.getenv("CLABTOPO_WORKDIR", Path.cwd() / "topologies"))

# Auth
EDITOR_TOKEN = os.getenv("CLABTOPO_EDITOR_TOKEN", "test")

LOG_LEVEL = os.getenv("CLABTOPO_LOG_LEVEL", "INFO")

# Annotation sidecar cache freshness window, in seconds.
ANNOTATIONS_CACHE_TTL = float(os.getenv("CLABTOPO_ANNOTATIONS_CACHE_TTL", "1.0"))

# File-change notifications arriving this soon after our own write are ours.
EXTERNAL_CHANGE_SUPPRESS_SECONDS = float(os.getenv("CLABTOPO_SUPPRESS_SECONDS", "0.5"))

DEFAULT_NODE_KIND = "nokia_srlinux"

# Fallback emitter layout for documents whose own indentation cannot be
# detected: mappings indented 2, sequence items 4 with the dash at offset 2.
YAML_MAPPING_INDENT = 2
YAML_SEQUENCE_INDENT = 4
YAML_SEQUENCE_DASH_OFFSET = 2
YAML_LINE_WIDTH = 4096

TOPOLOGY_SUFFIXES = (".clab.yml", ".clab.yaml")
ANNOTATIONS_SUFFIX = ".annotations.json"
