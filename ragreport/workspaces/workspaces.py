"""Workspaces Module for the RAG report generator

This module is the single entry point used by the API and the command line. It owns the
components of the pipeline (store, providers, prompt bank) and exposes the workspace
lifecycle on top of them.

Key Features:
- Create/list workspaces; each one is marked by `workspace/workspace.json`.
- Upload documents (duplicates are reported, never overwritten) and list them with
  their processed flag.
- Incremental ingestion, batch and streaming generation, modification, results listing
  and HTML export.
- Per-workspace asyncio locks: ingest, generate and modify on the same workspace never
  interleave their read-mutate-write of the index or results log.

Usage:
  from ragreport.workspaces.workspaces import WorkspaceService
  service = WorkspaceService.from_settings(get_settings())
  await service.create_workspace('acme')
  await service.upload('acme', 'brief.pdf', data)
  await service.ingest('acme')
  records = await service.generate_all('acme')
"""

from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from ragreport.core.config import Settings
from ragreport.core.errors import NotFoundError, WorkspaceExistsError
from ragreport.core.logging import get_logger
from ragreport.embeddings.embeddings import EmbeddingProvider, get_embedding_provider
from ragreport.export.export import render_report
from ragreport.generation.completion import CompletionProvider, get_completion_provider
from ragreport.generation.generation import GenerationEngine, QueueSink
from ragreport.generation.modification import ModificationEngine
from ragreport.generation.prompts import TEMPLATE_VERSION, PromptBank
from ragreport.generation.results import ResultRecord, ResultsLog
from ragreport.ingestion.ingestion import ChunkSplitter, IngestionPipeline, IngestionReport
from ragreport.ingestion.loaders import DocumentLoader
from ragreport.storage.documents import UPLOADS, WORKSPACE, DocumentStore, LocalDocumentStore, check_segment
from ragreport.storage.storage import VectorIndex

logger = get_logger(__name__)

MARKER_BLOB = "workspace.json"


class WorkspaceLocks:
    """One asyncio.Lock per workspace name, created on first use."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, workspace: str) -> asyncio.Lock:
        return self._locks[workspace]


def sanitize_file_name(file_name: str) -> str:
    """Strip any directory part of an uploaded file name."""
    name = PurePosixPath((file_name or "").replace("\\", "/")).name.strip()
    return check_segment(name, "file name")


class WorkspaceService:
    """Facade over the whole pipeline, scoped by workspace."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingProvider, completion: CompletionProvider,
                 prompt_bank: Optional[PromptBank] = None, splitter: Optional[ChunkSplitter] = None,
                 loader: Optional[DocumentLoader] = None, top_k: int = 5):
        self.store = store
        self.embedder = embedder
        self.completion = completion
        self.prompt_bank = prompt_bank or PromptBank.default()
        self.results_log = ResultsLog(store)
        self.locks = WorkspaceLocks()
        self.ingestion = IngestionPipeline(store, embedder, loader=loader, splitter=splitter)
        self.generation = GenerationEngine(store, embedder, completion, self.prompt_bank,
                                           top_k=top_k, results_log=self.results_log)
        self.modification = ModificationEngine(store, embedder, completion, self.prompt_bank,
                                               top_k=top_k, results_log=self.results_log)
        self._background: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkspaceService":
        """Wire the local store and the configured providers."""
        logger.info(f"Building workspace service (storage root: {settings.STORAGE_ROOT})")
        return cls(
            store=LocalDocumentStore(settings.STORAGE_ROOT),
            embedder=get_embedding_provider(settings),
            completion=get_completion_provider(settings),
            prompt_bank=PromptBank.default(settings.PROMPT_BANK_PATH),
            splitter=ChunkSplitter(settings.CHUNK_SIZE, settings.CHUNK_OVERLAP),
            top_k=settings.RETRIEVAL_TOP_K,
        )

    # ------------------------------------------------------------------
    # workspaces
    # ------------------------------------------------------------------
    async def create_workspace(self, name: str) -> Dict[str, Any]:
        """
        Create a workspace with an empty (placeholder-seeded) index.

        Raises:
            ValidationError: If the name is empty or contains path separators.
            WorkspaceExistsError: If the workspace already exists.
        """
        workspace = check_segment((name or "").strip(), "workspace name")
        async with self.locks.get(workspace):
            if await self.store.exists(workspace, WORKSPACE, MARKER_BLOB):
                raise WorkspaceExistsError(f"Workspace {workspace!r} already exists")

            index = await VectorIndex.initialize(self.store, workspace, self.embedder)
            await index.persist()
            marker = {
                'name': workspace,
                'createdAt': datetime.now(timezone.utc).isoformat(),
                'templateVersion': TEMPLATE_VERSION,
            }
            await self.store.write(workspace, WORKSPACE, MARKER_BLOB, json.dumps(marker, indent=2).encode("utf-8"))
        logger.info(f"Created workspace: {workspace}")
        return marker

    async def list_workspaces(self) -> List[str]:
        return await self.store.list_workspaces()

    async def require_workspace(self, workspace: str) -> str:
        """Return the validated name, or raise NotFoundError if the workspace was never created."""
        check_segment(workspace, "workspace name")
        if not await self.store.exists(workspace, WORKSPACE, MARKER_BLOB):
            raise NotFoundError(f"Workspace {workspace!r} not found")
        return workspace

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------
    async def upload(self, workspace: str, file_name: str, data: bytes) -> Dict[str, Any]:
        """
        Store an uploaded document under `uploads`.

        Returns:
            {'fileName': ..., 'duplicate': bool}. A duplicate is left untouched.
        """
        await self.require_workspace(workspace)
        name = sanitize_file_name(file_name)
        async with self.locks.get(workspace):
            if await self.store.exists(workspace, UPLOADS, name):
                logger.info(f"Duplicate upload skipped: {name}")
                return {'fileName': name, 'duplicate': True}
            await self.store.write(workspace, UPLOADS, name, data)
        logger.info(f"Uploaded {name} ({len(data)} bytes) to {workspace}")
        return {'fileName': name, 'duplicate': False}

    async def list_files(self, workspace: str) -> List[Dict[str, Any]]:
        await self.require_workspace(workspace)
        names = await self.store.list_files(workspace, UPLOADS)
        try:
            processed = (await VectorIndex.load(self.store, workspace, self.embedder)).processed_file_names()
        except NotFoundError:
            processed = set()
        return [{'fileName': name, 'processed': name in processed} for name in names]

    async def ingest(self, workspace: str, files: Optional[Sequence[str]] = None) -> IngestionReport:
        """Index the given uploads, or every upload when `files` is None."""
        await self.require_workspace(workspace)
        async with self.locks.get(workspace):
            candidates = list(files) if files is not None else await self.store.list_files(workspace, UPLOADS)
            logger.info(f"Ingesting {len(candidates)} candidate files into {workspace}")
            return await self.ingestion.process(workspace, candidates)

    # ------------------------------------------------------------------
    # generation
    # ------------------------------------------------------------------
    async def generate_all(self, workspace: str) -> List[ResultRecord]:
        await self.require_workspace(workspace)
        async with self.locks.get(workspace):
            return await self.generation.generate(workspace)

    async def stream_generation(self, workspace: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Run generation in the background and yield its events as they arrive.

        Events are {'type': 'result', 'result': {...}}, then exactly one of
        {'type': 'done', 'count': n} or {'type': 'error', 'message': ...}.
        Closing the iterator early stops further sections; everything already
        emitted is still persisted.
        """
        await self.require_workspace(workspace)
        sink = QueueSink()
        cancel = asyncio.Event()
        self._track(asyncio.create_task(self._locked_run(workspace, sink, cancel)))
        try:
            async for event in sink:
                yield event
        finally:
            cancel.set()

    async def _locked_run(self, workspace: str, sink: QueueSink, cancel: asyncio.Event) -> List[ResultRecord]:
        async with self.locks.get(workspace):
            return await self.generation.run(workspace, sink, cancel)

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            logger.warning("Background generation task was cancelled")
        elif task.exception() is not None:
            logger.error(f"Background generation failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every background generation to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def modify(self, workspace: str, sections: Sequence[str], extra_instructions: str) -> List[ResultRecord]:
        await self.require_workspace(workspace)
        async with self.locks.get(workspace):
            return await self.modification.modify(workspace, sections, extra_instructions)

    # ------------------------------------------------------------------
    # results
    # ------------------------------------------------------------------
    async def list_results(self, workspace: str) -> List[ResultRecord]:
        await self.require_workspace(workspace)
        return await self.results_log.load(workspace)

    async def export_html(self, workspace: str) -> str:
        records = await self.list_results(workspace)
        return render_report(workspace, records)
