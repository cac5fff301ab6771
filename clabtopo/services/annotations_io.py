"""Cached, queued and lock-guarded access to ``*.annotations.json`` sidecars.

Every topology file ``lab.clab.yml`` has its presentation state (positions,
icons, groups, free text/shapes) in ``lab.clab.yml.annotations.json`` next
to it. Per sidecar path:

* reads are cached for a short window (``ANNOTATIONS_CACHE_TTL``);
* writes go through a FIFO lock so they land on disk in call order, and a
  write whose content matches the file is skipped;
* ``modify_annotations`` holds a second lock across a fresh load, the
  caller's change and the save, so overlapping read-modify-write calls never
  drop each other's changes.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import time
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from clabtopo.config import ANNOTATIONS_CACHE_TTL, ANNOTATIONS_SUFFIX
from clabtopo.errors import AnnotationsError, StorageError
from clabtopo.schemas import InterfacePatternMigration, NodeAnnotationData
from clabtopo.services.fs_adapter import LocalFileSystem

log = logging.getLogger(__name__)

Annotations = dict[str, Any]

ANNOTATION_LISTS = (
    "nodeAnnotations",
    "networkNodeAnnotations",
    "groupStyleAnnotations",
    "freeTextAnnotations",
    "freeShapeAnnotations",
)
_CONTENT_LISTS = ANNOTATION_LISTS + (
    "edgeAnnotations",
    "aliasEndpointAnnotations",
    "cloudNodeAnnotations",
)
_LEGACY_NETWORK_FIELDS = ("id", "type", "label", "position", "group", "level")


def create_empty_annotations() -> Annotations:
    return {key: [] for key in ANNOTATION_LISTS}


def annotations_file_path(yaml_path: str | Path) -> Path:
    yaml_path = Path(yaml_path)
    return yaml_path.with_name(yaml_path.name + ANNOTATIONS_SUFFIX)


def migrate_annotations(annotations: Annotations) -> Annotations:
    """Move legacy ``cloudNodeAnnotations`` into ``networkNodeAnnotations``."""
    if annotations.get("networkNodeAnnotations"):
        return annotations
    legacy = annotations.get("cloudNodeAnnotations")
    if legacy:
        annotations["networkNodeAnnotations"] = [
            {key: cloud[key] for key in _LEGACY_NETWORK_FIELDS if key in cloud}
            for cloud in legacy
        ]
        del annotations["cloudNodeAnnotations"]
    return annotations


def has_content(annotations: Annotations) -> bool:
    if any(annotations.get(key) for key in _CONTENT_LISTS):
        return True
    return bool(annotations.get("viewerSettings"))


def serialize_annotations(annotations: Annotations) -> str:
    return json.dumps(annotations, indent=2, ensure_ascii=False)


# ── Record helpers (used inside modifiers) ─────────────────────────


def ensure_node_annotation(annotations: Annotations, node_id: str) -> dict[str, Any]:
    records = annotations.setdefault("nodeAnnotations", [])
    for record in records:
        if record.get("id") == node_id:
            return record
    record = {"id": node_id}
    records.append(record)
    return record


def apply_node_annotation_data(record: dict[str, Any], data: NodeAnnotationData | None) -> None:
    if data is None:
        return
    if data.clears_label():
        record.pop("label", None)
    elif data.label is not None:
        record["label"] = data.label
    if data.icon:
        record["icon"] = data.icon
    if data.iconColor:
        record["iconColor"] = data.iconColor
    if data.iconCornerRadius is not None:
        record["iconCornerRadius"] = data.iconCornerRadius
    if data.interfacePattern:
        record["interfacePattern"] = data.interfacePattern
    if data.groupId:
        record["groupId"] = data.groupId


def apply_interface_pattern_migrations(
    annotations: Annotations,
    migrations: Iterable[InterfacePatternMigration],
) -> int:
    """Give each listed node its interface pattern unless one is already recorded."""
    migrated = 0
    for migration in migrations:
        record = ensure_node_annotation(annotations, migration.nodeId)
        if not record.get("interfacePattern"):
            record["interfacePattern"] = migration.interfacePattern
            migrated += 1
    return migrated


class AnnotationsIO:
    """Annotation sidecar reader/writer shared by every open topology."""

    def __init__(
        self,
        fs: LocalFileSystem | None = None,
        cache_ttl: float = ANNOTATIONS_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.fs = fs or LocalFileSystem()
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._cache: dict[Path, tuple[Annotations, float]] = {}
        self._save_locks: dict[Path, asyncio.Lock] = {}
        self._modify_locks: dict[Path, asyncio.Lock] = {}

    def _save_lock(self, path: Path) -> asyncio.Lock:
        return self._save_locks.setdefault(path, asyncio.Lock())

    def _modify_lock(self, path: Path) -> asyncio.Lock:
        return self._modify_locks.setdefault(path, asyncio.Lock())

    def is_cached(self, yaml_path: str | Path) -> bool:
        entry = self._cache.get(annotations_file_path(yaml_path))
        return entry is not None and self._clock() - entry[1] < self.cache_ttl

    async def load_annotations(self, yaml_path: str | Path, skip_cache: bool = False) -> Annotations:
        """Return the sidecar contents; an absent file reads as empty.

        Raises ``AnnotationsError`` when the file exists but is not valid
        JSON, so a later save never overwrites it with an empty document.
        """
        path = annotations_file_path(yaml_path)

        # Let queued writes land before reading.
        pending = self._save_locks.get(path)
        if pending is not None and pending.locked():
            async with pending:
                pass

        if not skip_cache:
            cached = self._cache.get(path)
            if cached and self._clock() - cached[1] < self.cache_ttl:
                log.debug("Using cached annotations for %s", path)
                return copy.deepcopy(cached[0])

        try:
            content = await self.fs.read_text(path) if await self.fs.exists(path) else None
        except OSError as exc:
            raise AnnotationsError(f"Failed to read annotations from {path}: {exc}") from exc

        if content is None or not content.strip():
            annotations = create_empty_annotations()
        else:
            try:
                annotations = json.loads(content)
            except json.JSONDecodeError as exc:
                raise AnnotationsError(f"Invalid annotations file {path}: {exc}") from exc
            if not isinstance(annotations, dict):
                raise AnnotationsError(f"Invalid annotations file {path}: expected a JSON object")
            annotations = migrate_annotations(annotations)
            log.info("Loaded annotations from %s", path)

        self._cache[path] = (copy.deepcopy(annotations), self._clock())
        return annotations

    async def save_annotations(self, yaml_path: str | Path, annotations: Annotations) -> None:
        """Queue a write of ``annotations``; returns once it is on disk."""
        path = annotations_file_path(yaml_path)
        async with self._save_lock(path):
            await self._write(path, annotations)
            self._cache[path] = (copy.deepcopy(annotations), self._clock())

    async def _write(self, path: Path, annotations: Annotations) -> None:
        try:
            if not has_content(annotations):
                if await self.fs.exists(path):
                    await self.fs.unlink(path)
                    log.info("Removed empty annotations file %s", path)
                return

            content = serialize_annotations(annotations)
            try:
                existing = await self.fs.read_text(path) if await self.fs.exists(path) else None
            except OSError:
                existing = None
            if existing == content:
                log.debug("Annotations unchanged, skipping save for %s", path)
                return
            await self.fs.write_text(path, content)
            log.info("Saved annotations to %s", path)
        except OSError as exc:
            log.error("Failed to save annotations to %s: %s", path, exc)
            raise StorageError(f"Failed to save annotations to {path}: {exc}") from exc

    async def modify_annotations(
        self,
        yaml_path: str | Path,
        modifier: Callable[[Annotations], Annotations | None],
    ) -> Annotations:
        """Atomic read-modify-write; ``modifier`` may mutate in place or return a new dict.

        If ``modifier`` raises, nothing is written and the error surfaces as
        ``AnnotationsError``.
        """
        path = annotations_file_path(yaml_path)
        async with self._modify_lock(path):
            annotations = await self.load_annotations(yaml_path, skip_cache=True)
            try:
                modified = modifier(annotations)
            except Exception as exc:
                log.exception("Annotation update for %s failed; nothing was saved", path)
                raise AnnotationsError(f"Failed to update annotations for {path}: {exc}") from exc
            if modified is None:
                modified = annotations
            await self.save_annotations(yaml_path, modified)
            return modified

    def clear_cache(self) -> None:
        """Forget cached contents, queues and locks for every path."""
        self._cache.clear()
        self._save_locks.clear()
        self._modify_locks.clear()
