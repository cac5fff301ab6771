"""Per-file topology session: document edits, batched saves and annotation cascades."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from clabtopo.config import EXTERNAL_CHANGE_SUPPRESS_SECONDS
from clabtopo.errors import (
    ERROR_NO_YAML_PATH,
    ERROR_SERVICE_NOT_INIT,
    StorageError,
    TopologyParseError,
)
from clabtopo.schemas import (
    InterfacePatternMigration,
    LinkSaveData,
    NodeAnnotationData,
    NodePosition,
    NodeSaveData,
    Position,
    SaveResult,
)
from clabtopo.services.annotations_io import (
    Annotations,
    AnnotationsIO,
    apply_interface_pattern_migrations,
    apply_node_annotation_data,
    ensure_node_annotation,
)
from clabtopo.services.fs_adapter import LocalFileSystem
from clabtopo.services.link_persistence import (
    add_link_to_doc,
    delete_link_from_doc,
    edit_link_in_doc,
    remove_network_node_links,
)
from clabtopo.services.node_persistence import (
    add_node_to_doc,
    delete_node_from_doc,
    edit_node_in_doc,
)
from clabtopo.services.yaml_document import YamlDocument, parse, serialize

log = logging.getLogger(__name__)


def _with_save_outcome(result: SaveResult, saved: SaveResult) -> SaveResult:
    """A failed write fails the operation but keeps what the tree edit reported (e.g. ``renamed``)."""
    if saved.success:
        return result
    return result.model_copy(update={"success": False, "error": saved.error})


class TopologyIO:
    """Owns the parsed document of one open topology file.

    Every mutating call returns a ``SaveResult``; failures never raise.
    Between ``begin_batch()`` and the matching ``end_batch()`` edits only
    touch the in-memory tree and a single write happens at the end.
    """

    def __init__(
        self,
        fs: LocalFileSystem | None = None,
        annotations_io: AnnotationsIO | None = None,
        set_internal_update: Callable[[bool], None] | None = None,
        suppress_seconds: float = EXTERNAL_CHANGE_SUPPRESS_SECONDS,
    ):
        self.fs = fs or LocalFileSystem()
        self.annotations_io = annotations_io or AnnotationsIO(self.fs)
        self._set_internal_update = set_internal_update
        self.suppress_seconds = suppress_seconds

        self._doc: YamlDocument | None = None
        self._path: Path | None = None
        self._batch_depth = 0
        self._pending_save = False
        self._save_lock = asyncio.Lock()
        self._internal_update = False
        self._suppress_handle: asyncio.TimerHandle | None = None

    # ── Lifecycle ──────────────────────────────────────────────────

    def initialize(self, doc: YamlDocument, yaml_path: str | Path) -> None:
        self._doc = doc
        self._path = Path(yaml_path)

    async def initialize_from_file(self, yaml_path: str | Path) -> SaveResult:
        yaml_path = Path(yaml_path)
        try:
            content = await self.fs.read_text(yaml_path)
            doc = parse(content)
        except (OSError, TopologyParseError) as exc:
            log.error("Failed to load topology %s: %s", yaml_path, exc)
            return SaveResult.fail(str(exc))
        self.initialize(doc, yaml_path)
        log.info("Loaded topology from %s", yaml_path)
        return SaveResult.ok()

    async def reload(self) -> SaveResult:
        """Re-read the file after an external change; pending in-memory edits are dropped."""
        if self._path is None:
            return SaveResult.fail(ERROR_NO_YAML_PATH)
        if self._batch_depth:
            log.warning("Reloading %s inside an open batch", self._path)
        self._pending_save = False
        return await self.initialize_from_file(self._path)

    def is_initialized(self) -> bool:
        return self._doc is not None and self._path is not None

    @property
    def yaml_path(self) -> Path | None:
        return self._path

    @property
    def document(self) -> YamlDocument | None:
        return self._doc

    def is_internal_update(self) -> bool:
        """True while file-change notifications are most likely echoes of our own write."""
        return self._internal_update

    # ── Batching ───────────────────────────────────────────────────

    def begin_batch(self) -> None:
        self._batch_depth += 1

    async def end_batch(self) -> SaveResult:
        if self._batch_depth > 0:
            self._batch_depth -= 1
        if self._batch_depth == 0 and self._pending_save:
            self._pending_save = False
            return await self.save()
        return SaveResult.ok()

    @contextlib.asynccontextmanager
    async def batch(self):
        self.begin_batch()
        try:
            yield self
        finally:
            result = await self.end_batch()
            if not result.success:
                log.error("Batch save failed for %s: %s", self._path, result.error)

    async def _save_maybe_deferred(self) -> SaveResult:
        if self._batch_depth > 0:
            self._pending_save = True
            return SaveResult.ok()
        return await self.save()

    # ── Saving ─────────────────────────────────────────────────────

    def _begin_internal_update(self) -> None:
        self._internal_update = True
        if self._set_internal_update is not None:
            self._set_internal_update(True)
        if self._suppress_handle is not None:
            self._suppress_handle.cancel()
        loop = asyncio.get_running_loop()
        self._suppress_handle = loop.call_later(self.suppress_seconds, self._end_internal_update)

    def _end_internal_update(self) -> None:
        self._internal_update = False
        self._suppress_handle = None
        if self._set_internal_update is not None:
            self._set_internal_update(False)

    async def save(self) -> SaveResult:
        """Write the document unless the file on disk already has the same text."""
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)

        async with self._save_lock:
            content = serialize(self._doc)
            try:
                existing = await self.fs.read_text(self._path) if await self.fs.exists(self._path) else None
            except OSError:
                existing = None
            if existing == content:
                log.debug("No YAML changes detected; skipping save of %s", self._path)
                return SaveResult.ok()

            self._begin_internal_update()
            try:
                await self.fs.write_text(self._path, content)
            except OSError as exc:
                log.error("Failed to save topology %s: %s", self._path, exc)
                return SaveResult.fail(f"Failed to save topology: {exc}")
            log.info("Saved topology to %s", self._path)
            return SaveResult.ok()

    async def _commit(self, result: SaveResult) -> SaveResult:
        if not result.success:
            return result
        return _with_save_outcome(result, await self._save_maybe_deferred())

    def _apply(self, operation: Callable[..., SaveResult], *args: Any) -> SaveResult:
        try:
            return operation(*args)
        except (TypeError, ValueError, KeyError) as exc:
            log.exception("%s failed", operation.__name__)
            return SaveResult.fail(str(exc))

    # ── Annotation cascades ────────────────────────────────────────

    async def _modify_best_effort(self, what: str, modifier: Callable[[Annotations], Any]) -> None:
        """Annotation changes that follow a committed YAML edit; failures are only logged."""
        try:
            await self.annotations_io.modify_annotations(self._path, modifier)
        except StorageError as exc:
            log.warning("Could not %s in annotations of %s: %s", what, self._path, exc)

    async def _save_node_annotation(
        self,
        node_id: str,
        position: Position | None,
        data: NodeAnnotationData | None,
    ) -> None:
        if position is None and (data is None or data.is_empty()):
            return

        def update(annotations: Annotations) -> None:
            record = ensure_node_annotation(annotations, node_id)
            if position is not None:
                record["position"] = position.model_dump()
            apply_node_annotation_data(record, data)

        await self._modify_best_effort(f"save annotation for node {node_id!r}", update)

    async def _rename_node_annotations(self, old_id: str, new_id: str) -> None:
        def rename(annotations: Annotations) -> None:
            for record in annotations.get("nodeAnnotations") or []:
                if record.get("id") == old_id:
                    record["id"] = new_id

        await self._modify_best_effort(f"rename node {old_id!r}", rename)

    async def _remove_node_annotations(self, node_id: str) -> None:
        def prune(annotations: Annotations) -> None:
            for key in ("nodeAnnotations", "networkNodeAnnotations"):
                records = annotations.get(key)
                if records:
                    annotations[key] = [r for r in records if r.get("id") != node_id]

        await self._modify_best_effort(f"remove node {node_id!r}", prune)

    async def _remove_network_node_annotation(self, node_id: str) -> bool:
        removed = False

        def prune(annotations: Annotations) -> None:
            nonlocal removed
            records = annotations.get("networkNodeAnnotations") or []
            kept = [r for r in records if r.get("id") != node_id]
            if len(kept) != len(records):
                removed = True
                annotations["networkNodeAnnotations"] = kept

        await self._modify_best_effort(f"remove network node {node_id!r}", prune)
        return removed

    # ── Nodes ──────────────────────────────────────────────────────

    async def add_node(self, node_data: NodeSaveData) -> SaveResult:
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)

        result = self._apply(add_node_to_doc, self._doc, node_data)
        if not result.success:
            return result
        saved = await self._save_maybe_deferred()
        await self._save_node_annotation(node_data.node_id, node_data.position, node_data.annotation)
        return _with_save_outcome(result, saved)

    async def edit_node(self, node_data: NodeSaveData) -> SaveResult:
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)

        topology = self._doc.to_plain()
        result = self._apply(edit_node_in_doc, self._doc, node_data, topology)
        if not result.success:
            return result
        saved = await self._save_maybe_deferred()

        # The sidecar follows the in-memory tree even when this write failed.
        if result.renamed:
            await self._rename_node_annotations(result.renamed.oldId, result.renamed.newId)
        node_id = result.renamed.newId if result.renamed else node_data.node_id
        await self._save_node_annotation(node_id, node_data.position, node_data.annotation)
        return _with_save_outcome(result, saved)

    async def delete_node(self, node_id: str) -> SaveResult:
        """Delete a YAML node, or failing that the network node (host:eth0, vxlan:...) with this id."""
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)

        result = self._apply(delete_node_from_doc, self._doc, node_id)
        if result.success:
            saved = await self._save_maybe_deferred()
            await self._remove_node_annotations(node_id)
            return _with_save_outcome(result, saved)

        saved = SaveResult.ok()
        removed_links = remove_network_node_links(self._doc, node_id)
        if removed_links:
            saved = await self._save_maybe_deferred()
        # Network nodes can exist in annotations before any link uses them.
        removed_annotation = await self._remove_network_node_annotation(node_id)
        if not removed_links and not removed_annotation:
            return result
        return saved

    # ── Links ──────────────────────────────────────────────────────

    async def add_link(self, link_data: LinkSaveData) -> SaveResult:
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)
        return await self._commit(self._apply(add_link_to_doc, self._doc, link_data))

    async def edit_link(self, link_data: LinkSaveData) -> SaveResult:
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)
        return await self._commit(self._apply(edit_link_in_doc, self._doc, link_data))

    async def delete_link(self, link_data: LinkSaveData) -> SaveResult:
        if not self.is_initialized():
            return SaveResult.fail(ERROR_SERVICE_NOT_INIT)
        return await self._commit(self._apply(delete_link_from_doc, self._doc, link_data))

    # ── Annotations ────────────────────────────────────────────────

    async def modify_annotations(self, modifier: Callable[[Annotations], Annotations | None]) -> SaveResult:
        if self._path is None:
            return SaveResult.fail(ERROR_NO_YAML_PATH)
        try:
            await self.annotations_io.modify_annotations(self._path, modifier)
        except StorageError as exc:
            log.error("Failed to update annotations for %s: %s", self._path, exc)
            return SaveResult.fail(str(exc))
        return SaveResult.ok()

    async def save_node_position(
        self,
        node_id: str,
        position: Position,
        annotation: NodeAnnotationData | None = None,
    ) -> SaveResult:
        def update(annotations: Annotations) -> None:
            record = ensure_node_annotation(annotations, node_id)
            record["position"] = position.model_dump()
            apply_node_annotation_data(record, annotation)

        return await self.modify_annotations(update)

    async def save_positions(self, positions: Iterable[NodePosition]) -> SaveResult:
        """Store positions; ids known as network nodes stay in ``networkNodeAnnotations``."""
        positions = list(positions)

        def update(annotations: Annotations) -> None:
            network = {r.get("id"): r for r in annotations.get("networkNodeAnnotations") or []}
            for item in positions:
                record = network.get(item.id)
                if record is None:
                    record = ensure_node_annotation(annotations, item.id)
                record["position"] = item.position.model_dump()

        result = await self.modify_annotations(update)
        if result.success:
            log.info("Saved %d positions for %s", len(positions), self._path)
        return result

    async def migrate_interface_patterns(self, migrations: Iterable[InterfacePatternMigration]) -> SaveResult:
        """Record default interface patterns for nodes whose annotations lack one."""
        migrations = list(migrations)
        if not migrations:
            return SaveResult.ok()
        migrated = 0

        def update(annotations: Annotations) -> None:
            nonlocal migrated
            migrated = apply_interface_pattern_migrations(annotations, migrations)

        result = await self.modify_annotations(update)
        if result.success and migrated:
            log.info("Migrated interface patterns for %d nodes in %s", migrated, self._path)
        return result

    async def load_annotations(self) -> Annotations:
        if self._path is None:
            raise StorageError(ERROR_NO_YAML_PATH)
        return await self.annotations_io.load_annotations(self._path)
