import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from clabtopo.auth import require_editor
from clabtopo.errors import StorageError, TopologyParseError
from clabtopo.schemas import (
    AddLinkOp,
    AddNodeOp,
    BatchOperation,
    BatchRequest,
    BatchResponse,
    DeleteLinkOp,
    DeleteNodeOp,
    EditLinkOp,
    EditNodeOp,
    LinkSaveData,
    NodeSaveData,
    PositionsUpdate,
    SaveResult,
    TopologyCreate,
    TopologyRecord,
    TopologySummary,
)
from clabtopo.services.sessions import SessionRegistry
from clabtopo.services.topology_io import TopologyIO
from clabtopo.services.yaml_document import serialize

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/topologies", tags=["topologies"])


# ── Helpers ─────────────────────────────────────────────────────────


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_session(file_name: str, registry: SessionRegistry = Depends(get_registry)) -> TopologyIO:
    try:
        return await registry.open(file_name)
    except FileNotFoundError:
        raise HTTPException(404, "Topology not found")
    except TopologyParseError as e:
        raise HTTPException(400, f"Failed to parse clab file: {e}")
    except ValueError as e:
        raise HTTPException(400, str(e))


def _check(result: SaveResult) -> SaveResult:
    """Turn a failed result into the matching HTTP error."""
    if result.success:
        return result
    error = result.error or "Operation failed"
    lowered = error.lower()
    if "not found" in lowered:
        raise HTTPException(404, error)
    if "already exists" in lowered:
        raise HTTPException(409, error)
    if lowered.startswith("failed to save"):
        raise HTTPException(500, error)
    raise HTTPException(400, error)


async def _record(file_name: str, session: TopologyIO) -> TopologyRecord:
    try:
        annotations = await session.load_annotations()
    except StorageError as e:
        raise HTTPException(500, str(e))
    return TopologyRecord(
        fileName=file_name,
        path=str(session.yaml_path),
        yaml=serialize(session.document),
        annotations=annotations,
    )


async def _apply_operation(session: TopologyIO, op: BatchOperation) -> SaveResult:
    if isinstance(op, AddNodeOp):
        return await session.add_node(op.node)
    if isinstance(op, EditNodeOp):
        return await session.edit_node(op.node)
    if isinstance(op, DeleteNodeOp):
        return await session.delete_node(op.nodeId)
    if isinstance(op, AddLinkOp):
        return await session.add_link(op.link)
    if isinstance(op, EditLinkOp):
        return await session.edit_link(op.link)
    if isinstance(op, DeleteLinkOp):
        return await session.delete_link(op.link)
    return SaveResult.fail(f"Unsupported operation: {op!r}")


# ── Topology files ──────────────────────────────────────────────────


@router.get("", response_model=list[TopologySummary])
def list_topologies(
    _=Depends(require_editor),
    registry: SessionRegistry = Depends(get_registry),
):
    return registry.summaries()


@router.post("", response_model=TopologyRecord, status_code=201)
async def create_topology(
    body: TopologyCreate,
    _=Depends(require_editor),
    registry: SessionRegistry = Depends(get_registry),
):
    try:
        file_name = await registry.create(body.name, body.fileName)
    except FileExistsError as e:
        raise HTTPException(409, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    session = await get_session(file_name, registry)
    return await _record(file_name, session)


@router.get("/{file_name}", response_model=TopologyRecord)
async def get_topology(
    file_name: str,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return await _record(file_name, session)


@router.post("/{file_name}/reload", response_model=SaveResult)
async def reload_topology(
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.reload())


# ── Nodes ───────────────────────────────────────────────────────────


@router.post("/{file_name}/nodes", response_model=SaveResult, status_code=201)
async def add_node(
    body: NodeSaveData,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.add_node(body))


@router.put("/{file_name}/nodes/{node_id}", response_model=SaveResult)
async def edit_node(
    node_id: str,
    body: NodeSaveData,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    node = body.model_copy(update={"id": node_id, "name": body.name or node_id})
    return _check(await session.edit_node(node))


@router.delete("/{file_name}/nodes/{node_id}", response_model=SaveResult)
async def delete_node(
    node_id: str,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.delete_node(node_id))


# ── Links ───────────────────────────────────────────────────────────


@router.post("/{file_name}/links", response_model=SaveResult, status_code=201)
async def add_link(
    body: LinkSaveData,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.add_link(body))


@router.put("/{file_name}/links", response_model=SaveResult)
async def edit_link(
    body: LinkSaveData,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.edit_link(body))


@router.delete("/{file_name}/links", response_model=SaveResult)
async def delete_link(
    body: LinkSaveData,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.delete_link(body))


# ── Annotations ─────────────────────────────────────────────────────


@router.get("/{file_name}/annotations")
async def get_annotations(
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    try:
        return await session.load_annotations()
    except StorageError as e:
        raise HTTPException(500, str(e))


@router.put("/{file_name}/positions", response_model=SaveResult)
async def save_positions(
    body: PositionsUpdate,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    return _check(await session.save_positions(body.positions))


# ── Batches ─────────────────────────────────────────────────────────


@router.post("/{file_name}/batch", response_model=BatchResponse)
async def apply_batch(
    body: BatchRequest,
    _=Depends(require_editor),
    session: TopologyIO = Depends(get_session),
):
    """Apply every operation to the in-memory document, then write the file once.

    A failed operation does not stop the batch; its result is reported in
    ``results`` at the same index.
    """
    results: list[SaveResult] = []
    session.begin_batch()
    try:
        for op in body.operations:
            results.append(await _apply_operation(session, op))
    finally:
        saved = await session.end_batch()
    if not saved.success:
        log.error("Batch save failed for %s: %s", session.yaml_path, saved.error)
    return BatchResponse(results=results, saved=saved)
