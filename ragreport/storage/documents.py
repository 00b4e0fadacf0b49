"""Blob storage for workspace artifacts.

Every artifact is addressed by (workspace, category, name):
- uploads/<file>                 raw uploaded bytes
- vector_store/index.faiss       serialized FAISS index
- vector_store/docstore.json     chunk log mirroring the index
- vector_store/index-config.json index hyperparameters
- results/results.json           flat log of result iterations
- workspace/workspace.json       workspace marker

Writes replace a whole blob at once; there are no partial updates.
"""
from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Dict, List, Protocol, Tuple

from ragreport.core.errors import NotFoundError, PersistenceError, ValidationError
from ragreport.core.logging import get_logger

logger = get_logger(__name__)

UPLOADS = "uploads"
VECTOR_STORE = "vector_store"
RESULTS = "results"
WORKSPACE = "workspace"


class DocumentStore(Protocol):
    """Persistence contract for workspace blobs."""

    async def exists(self, workspace: str, category: str, name: str) -> bool: ...

    async def list_files(self, workspace: str, category: str) -> List[str]: ...

    async def read(self, workspace: str, category: str, name: str) -> bytes: ...

    async def write(self, workspace: str, category: str, name: str, data: bytes) -> None: ...

    def locate(self, workspace: str, category: str, name: str) -> str: ...

    async def list_workspaces(self) -> List[str]: ...


def check_segment(value: str, label: str) -> str:
    if not value or value in (".", "..") or "/" in value or "\\" in value:
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


class InMemoryDocumentStore:
    """Dictionary-backed store for tests and ephemeral runs."""

    def __init__(self) -> None:
        self._blobs: Dict[Tuple[str, str, str], bytes] = {}

    async def exists(self, workspace: str, category: str, name: str) -> bool:
        return (workspace, category, name) in self._blobs

    async def list_files(self, workspace: str, category: str) -> List[str]:
        return sorted(n for (ws, cat, n) in self._blobs if ws == workspace and cat == category)

    async def read(self, workspace: str, category: str, name: str) -> bytes:
        try:
            return self._blobs[(workspace, category, name)]
        except KeyError:
            raise NotFoundError(f"{workspace}/{category}/{name} not found") from None

    async def write(self, workspace: str, category: str, name: str, data: bytes) -> None:
        self._blobs[(workspace, category, name)] = bytes(data)

    def locate(self, workspace: str, category: str, name: str) -> str:
        return f"memory://{workspace}/{category}/{name}"

    async def list_workspaces(self) -> List[str]:
        return sorted({ws for (ws, cat, _) in self._blobs if cat == WORKSPACE})


class LocalDocumentStore:
    """Filesystem store laid out as <root>/<workspace>/<category>/<name>."""

    def __init__(self, root: str = "workspaces") -> None:
        self.root = Path(root).resolve()

    def _path(self, workspace: str, category: str, name: str = "") -> Path:
        path = self.root / check_segment(workspace, "workspace") / check_segment(category, "category")
        if name:
            path = path / check_segment(name, "file name")
        return path

    async def exists(self, workspace: str, category: str, name: str) -> bool:
        return await asyncio.to_thread(self._path(workspace, category, name).is_file)

    async def list_files(self, workspace: str, category: str) -> List[str]:
        directory = self._path(workspace, category)

        def _list() -> List[str]:
            if not directory.is_dir():
                return []
            return sorted(p.name for p in directory.iterdir() if p.is_file() and not p.name.startswith("."))

        return await asyncio.to_thread(_list)

    async def read(self, workspace: str, category: str, name: str) -> bytes:
        path = self._path(workspace, category, name)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise NotFoundError(f"{workspace}/{category}/{name} not found") from None
        except OSError as exc:
            raise PersistenceError(f"Failed to read {path}: {exc}") from exc

    async def write(self, workspace: str, category: str, name: str, data: bytes) -> None:
        path = self._path(workspace, category, name)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise PersistenceError(f"Failed to write {path}: {exc}") from exc
        logger.debug(f"Wrote {len(data)} bytes to {path}")

    def locate(self, workspace: str, category: str, name: str) -> str:
        return str(self._path(workspace, category, name))

    async def list_workspaces(self) -> List[str]:
        def _list() -> List[str]:
            if not self.root.is_dir():
                return []
            return sorted(
                p.name for p in self.root.iterdir() if (p / WORKSPACE / "workspace.json").is_file()
            )

        return await asyncio.to_thread(_list)
