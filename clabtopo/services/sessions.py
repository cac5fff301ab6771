"""Open topology sessions under the work directory, one ``TopologyIO`` per file."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from clabtopo.config import TOPOLOGY_SUFFIXES
from clabtopo.errors import TopologyParseError
from clabtopo.services import clab_generator
from clabtopo.services.annotations_io import AnnotationsIO
from clabtopo.services.clab_importer import list_topologies
from clabtopo.services.fs_adapter import LocalFileSystem
from clabtopo.services.topology_io import TopologyIO

log = logging.getLogger(__name__)


class SessionRegistry:
    """Maps topology file names to their sessions; all sessions share one annotation store."""

    def __init__(self, workdir: Path, fs: LocalFileSystem | None = None, annotations_io: AnnotationsIO | None = None):
        self.workdir = Path(workdir)
        self.fs = fs or LocalFileSystem()
        self.annotations_io = annotations_io or AnnotationsIO(self.fs)
        self._sessions: dict[str, TopologyIO] = {}
        self._lock = asyncio.Lock()

    def resolve(self, file_name: str) -> Path:
        """Path of ``file_name`` inside the work directory; rejects anything else."""
        if not file_name or Path(file_name).name != file_name or file_name in (".", ".."):
            raise ValueError(f"Invalid topology file name: {file_name!r}")
        if not file_name.endswith(TOPOLOGY_SUFFIXES):
            raise ValueError(f"Topology file name must end with {' or '.join(TOPOLOGY_SUFFIXES)}")
        return self.workdir / file_name

    def summaries(self) -> list[dict]:
        return list_topologies(self.workdir)

    async def open(self, file_name: str) -> TopologyIO:
        """Return the session for ``file_name``, loading the file on first use.

        Raises ``ValueError`` for a bad name, ``FileNotFoundError`` when the
        file does not exist and ``TopologyParseError`` when it is not YAML.
        """
        path = self.resolve(file_name)
        async with self._lock:
            session = self._sessions.get(file_name)
            if session is not None:
                return session
            if not await self.fs.exists(path):
                raise FileNotFoundError(f"Topology {file_name} not found")
            session = TopologyIO(self.fs, self.annotations_io)
            result = await session.initialize_from_file(path)
            if not result.success:
                raise TopologyParseError(result.error or f"Could not load {file_name}")
            self._sessions[file_name] = session
            log.info("Opened topology session for %s", path)
            return session

    async def create(self, name: str, file_name: str | None = None) -> str:
        """Write a scaffold for a new topology and return its file name."""
        file_name = file_name or clab_generator.topology_file_name(name)
        path = self.resolve(file_name)
        if await self.fs.exists(path):
            raise FileExistsError(f"Topology {file_name} already exists")
        await asyncio.to_thread(self.workdir.mkdir, parents=True, exist_ok=True)
        await self.fs.write_text(path, clab_generator.generate_clab_yaml(name))
        log.info("Created topology %s", path)
        return file_name
