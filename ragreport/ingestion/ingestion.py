"""Ingestion Module for the RAG report generator

This module incrementally indexes a workspace's uploaded documents:
- Determines which uploads are new relative to the docstore (exact `originalFileName` match).
- Loads PDF/DOCX/DOC/TXT text, splits it into overlapping chunks (1000 chars, 200 overlap).
- Embeds only the new chunks and appends them to the workspace vector index.
- Persists the index once, and only when at least one file was added.

A single bad document never aborts the batch: it is reported as skipped with a reason.

Usage:
  from ragreport.ingestion.ingestion import IngestionPipeline
  pipeline = IngestionPipeline(store, embedder)
  report = await pipeline.process('acme', ['spec.pdf'])
  # report.processed == ['spec.pdf'], report.skipped == []
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any, Dict, Iterable, List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ragreport.core.errors import (
    DocumentLoadError,
    NotFoundError,
    ProviderError,
    UnsupportedFormatError,
    ValidationError,
)
from ragreport.core.logging import get_logger
from ragreport.embeddings.embeddings import EmbeddingProvider
from ragreport.ingestion.loaders import SUPPORTED_EXTENSIONS, DocumentLoader
from ragreport.storage.documents import UPLOADS, DocumentStore
from ragreport.storage.storage import Chunk, VectorIndex

logger = get_logger(__name__)


class ChunkSplitter:
    """LangChain-powered recursive character splitter."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= overlap < chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap
        self._splitter = RecursiveCharacterTextSplitter(chunk_size=chunk_size, chunk_overlap=overlap)

    def split(self, text: str) -> List[str]:
        return [piece for piece in self._splitter.split_text(text) if piece.strip()]


@dataclass
class IngestionReport:
    """Partition of the candidate files after one ingestion call."""

    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    reasons: Dict[str, str] = field(default_factory=dict)
    chunks_added: int = 0

    def skip(self, file_name: str, reason: str) -> None:
        self.skipped.append(file_name)
        self.reasons[file_name] = reason

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed': list(self.processed),
            'skipped': list(self.skipped),
            'reasons': dict(self.reasons),
            'chunks_added': self.chunks_added,
        }


class IngestionPipeline:
    """Main class for incremental document ingestion."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingProvider,
                 loader: Optional[DocumentLoader] = None, splitter: Optional[ChunkSplitter] = None,
                 category: str = UPLOADS):
        self.store = store
        self.embedder = embedder
        self.loader = loader or DocumentLoader()
        self.splitter = splitter or ChunkSplitter()
        self.category = category

    async def process(self, workspace: str, candidate_files: Iterable[str]) -> IngestionReport:
        """
        Embed every candidate file that is not yet in the workspace docstore.

        Args:
            workspace: Target workspace.
            candidate_files: Upload file names to consider.

        Returns:
            IngestionReport with processed and skipped file names.

        Raises:
            PersistenceError: If the index cannot be loaded or saved. Nothing is
                reported as processed in that case.
        """
        index = await VectorIndex.load_or_initialize(self.store, workspace, self.embedder)
        seen = index.processed_file_names()
        report = IngestionReport()

        for file_name in candidate_files:
            if file_name in seen:
                logger.info(f"File already processed: {file_name}")
                report.skip(file_name, "already processed")
                continue

            extension = PurePath(file_name).suffix.lower()
            if extension not in SUPPORTED_EXTENSIONS:
                logger.info(f"Unsupported file type: {file_name}")
                report.skip(file_name, f"unsupported format {extension or '(none)'}")
                continue

            try:
                chunks = await self._load_chunks(workspace, file_name, extension)
                if not chunks:
                    logger.warning(f"No extractable text in {file_name}")
                    report.skip(file_name, "no extractable text")
                    continue
                added = await index.add_chunks(chunks)
            except (DocumentLoadError, UnsupportedFormatError, NotFoundError, ProviderError, ValidationError) as exc:
                logger.error(f"Error processing file {file_name}: {exc}")
                report.skip(file_name, str(exc))
                continue

            seen.add(file_name)
            report.processed.append(file_name)
            report.chunks_added += added
            logger.info(f"Processed file: {file_name} ({added} chunks)")

        if report.processed:
            await index.persist()
            logger.info(f"Vector store updated for workspace: {workspace}", extra={"workspace": workspace})
        return report

    async def _load_chunks(self, workspace: str, file_name: str, extension: str) -> List[Chunk]:
        data = await self.store.read(workspace, self.category, file_name)
        text = await asyncio.to_thread(self.loader.load, data, extension)
        metadata = {
            'source': self.store.locate(workspace, self.category, file_name),
            'originalFileName': file_name,
        }
        return [Chunk(piece, metadata) for piece in self.splitter.split(text)]
