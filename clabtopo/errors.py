"""Error messages and exception types shared by the topology services."""

ERROR_NODES_NOT_MAP = "YAML topology nodes is not a map"
ERROR_LINKS_NOT_SEQ = "YAML topology links is not a sequence"
ERROR_TOPOLOGY_NOT_MAP = "YAML topology is not a map"
ERROR_SERVICE_NOT_INIT = "Topology service not initialized"
ERROR_NO_YAML_PATH = "No YAML file path set"


class TopologyParseError(ValueError):
    """Raised when topology text is not valid YAML."""


class StorageError(RuntimeError):
    """Raised when a topology or annotations file cannot be read or written."""


class AnnotationsError(StorageError):
    """Raised when an annotations sidecar cannot be decoded or an update to it fails."""
