"""Async file access for topology and annotation files.

Blocking filesystem calls run in a worker thread so that every storage
boundary is an ``await`` point for the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``text`` via a synced temp file in the same directory."""
    tmp_path: Path | None = None
    existing_mode: int | None = None
    try:
        if path.exists():
            try:
                existing_mode = path.stat().st_mode & 0o777
            except OSError:
                existing_mode = None
        with tempfile.NamedTemporaryFile(
            "w", encoding=encoding, delete=False, dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        if existing_mode is not None:
            os.chmod(tmp_path, existing_mode)
        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        if tmp_path and tmp_path.exists():
            try:
                tmp_path.unlink()
            except OSError:
                log.warning("Could not remove temp file %s", tmp_path)


class LocalFileSystem:
    """Filesystem adapter backed by the local disk."""

    async def read_text(self, path: Path) -> str:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")

    async def write_text(self, path: Path, text: str) -> None:
        await asyncio.to_thread(atomic_write_text, Path(path), text)

    async def exists(self, path: Path) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def unlink(self, path: Path) -> None:
        await asyncio.to_thread(Path(path).unlink, missing_ok=True)
