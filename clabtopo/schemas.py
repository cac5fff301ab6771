from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

# ── Shared ─────────────────────────────────────────────────────────


class Position(BaseModel):
    x: float
    y: float


class Renamed(BaseModel):
    oldId: str
    newId: str


class SaveResult(BaseModel):
    """Uniform outcome of every mutating topology operation."""

    success: bool
    error: str | None = None
    renamed: Renamed | None = None

    @classmethod
    def ok(cls, renamed: Renamed | None = None) -> "SaveResult":
        return cls(success=True, renamed=renamed)

    @classmethod
    def fail(cls, error: str) -> "SaveResult":
        return cls(success=False, error=error)


# ── Node payloads (mirror the containerlab node schema) ────────────


class NodeProperties(BaseModel):
    """Whitelisted containerlab node properties, keyed by their YAML names."""

    kind: str | None = None
    type: str | None = None
    image: str | None = None
    group: str | None = None
    startup_config: str | None = Field(default=None, alias="startup-config")
    enforce_startup_config: bool | None = Field(default=None, alias="enforce-startup-config")
    suppress_startup_config: bool | None = Field(default=None, alias="suppress-startup-config")
    license: str | None = None
    binds: list[str] | None = None
    env: dict[str, Any] | None = None
    env_files: list[str] | None = Field(default=None, alias="env-files")
    labels: dict[str, Any] | None = None
    user: str | None = None
    entrypoint: str | None = None
    cmd: str | None = None
    exec: list[str] | None = None
    restart_policy: str | None = Field(default=None, alias="restart-policy")
    auto_remove: bool | None = Field(default=None, alias="auto-remove")
    startup_delay: int | None = Field(default=None, alias="startup-delay")
    mgmt_ipv4: str | None = Field(default=None, alias="mgmt-ipv4")
    mgmt_ipv6: str | None = Field(default=None, alias="mgmt-ipv6")
    network_mode: str | None = Field(default=None, alias="network-mode")
    ports: list[str] | None = None
    dns: dict[str, Any] | None = None
    aliases: list[str] | None = None
    memory: str | None = None
    cpu: int | float | None = None
    cpu_set: str | None = Field(default=None, alias="cpu-set")
    shm_size: str | None = Field(default=None, alias="shm-size")
    cap_add: list[str] | None = Field(default=None, alias="cap-add")
    sysctls: dict[str, Any] | None = None
    devices: list[str] | None = None
    certificate: dict[str, Any] | None = None
    healthcheck: dict[str, Any] | None = None
    image_pull_policy: str | None = Field(default=None, alias="image-pull-policy")
    runtime: str | None = None
    components: list[dict[str, Any]] | None = None
    stages: dict[str, Any] | None = None

    model_config = {"populate_by_name": True, "extra": "forbid"}

    def yaml_values(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class NodeAnnotationData(BaseModel):
    """Presentation data for a node; written to the annotations sidecar."""

    label: str | None = None
    icon: str | None = None
    iconColor: str | None = None
    iconCornerRadius: float | None = None
    interfacePattern: str | None = None
    groupId: str | None = None

    def clears_label(self) -> bool:
        return "label" in self.model_fields_set and self.label is None

    def is_empty(self) -> bool:
        return not (
            self.icon
            or self.iconColor
            or self.iconCornerRadius is not None
            or self.interfacePattern
            or self.groupId
            or self.label is not None
            or self.clears_label()
        )


class NodeSaveData(BaseModel):
    id: str = ""
    name: str = ""
    extraData: NodeProperties = Field(default_factory=NodeProperties)
    position: Position | None = None
    annotation: NodeAnnotationData | None = None

    @property
    def node_id(self) -> str:
        return self.name or self.id


# ── Link payloads ──────────────────────────────────────────────────


class LinkExtraData(BaseModel):
    extType: str | None = None
    extMtu: int | None = None
    extHostInterface: str | None = None
    extMode: str | None = None
    extRemote: str | None = None
    extVni: int | None = None
    extDstPort: int | None = None
    extSrcPort: int | None = None
    extSourceMac: str | None = None
    extTargetMac: str | None = None
    extVars: dict[str, Any] | None = None
    extLabels: dict[str, Any] | None = None

    model_config = {"extra": "forbid"}

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: Any) -> Any:
        # Form fields arrive as "" when cleared.
        if isinstance(value, str) and not value.strip():
            return None
        return value


class LinkSaveData(BaseModel):
    id: str = ""
    source: str
    target: str = ""
    sourceEndpoint: str | None = None
    targetEndpoint: str | None = None
    extraData: LinkExtraData = Field(default_factory=LinkExtraData)
    # Identity of the link being replaced, when an edit changes endpoints.
    originalSource: str | None = None
    originalTarget: str | None = None
    originalSourceEndpoint: str | None = None
    originalTargetEndpoint: str | None = None
    originalType: str | None = None

    @property
    def link_type(self) -> str:
        return self.extraData.extType or "veth"


class NodePosition(BaseModel):
    id: str
    position: Position


class InterfacePatternMigration(BaseModel):
    """Interface naming pattern to record for a node that has none yet."""

    nodeId: str
    interfacePattern: str


# ── API request/response models ────────────────────────────────────


class TopologyCreate(BaseModel):
    name: str
    fileName: str | None = None


class TopologySummary(BaseModel):
    fileName: str
    name: str
    nodes: int
    links: int


class TopologyRecord(BaseModel):
    fileName: str
    path: str
    yaml: str
    annotations: dict[str, Any]


class PositionsUpdate(BaseModel):
    positions: list[NodePosition]


class AddNodeOp(BaseModel):
    op: Literal["addNode"]
    node: NodeSaveData


class EditNodeOp(BaseModel):
    op: Literal["editNode"]
    node: NodeSaveData


class DeleteNodeOp(BaseModel):
    op: Literal["deleteNode"]
    nodeId: str


class AddLinkOp(BaseModel):
    op: Literal["addLink"]
    link: LinkSaveData


class EditLinkOp(BaseModel):
    op: Literal["editLink"]
    link: LinkSaveData


class DeleteLinkOp(BaseModel):
    op: Literal["deleteLink"]
    link: LinkSaveData


BatchOperation = Union[AddNodeOp, EditNodeOp, DeleteNodeOp, AddLinkOp, EditLinkOp, DeleteLinkOp]


class BatchRequest(BaseModel):
    operations: list[Annotated[BatchOperation, Field(discriminator="op")]] = Field(default_factory=list)


class BatchResponse(BaseModel):
    results: list[SaveResult]
    saved: SaveResult
