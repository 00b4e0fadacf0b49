"""Storage Module for the RAG report generator

This module manages the per-workspace vector index using FAISS for exact similarity search.
The index is append-only and is persisted next to a docstore: an ordered log of every
embedded chunk, row-aligned with the FAISS vectors.

Key Features:
- FAISS IndexFlatIP over L2-normalised vectors, i.e. cosine similarity.
- Ties in similarity are broken by insertion order (earlier chunk wins).
- A fresh index is seeded with one placeholder chunk (the workspace name) so it is never empty.
- Persistence as three blobs: vector_store/index.faiss, vector_store/docstore.json,
  vector_store/index-config.json.
- The docstore's `originalFileName` metadata is the single de-duplication key for ingestion.

Usage:
  from ragreport.storage.storage import VectorIndex
  index = await VectorIndex.load_or_initialize(store, 'acme', embedder)
  await index.add_chunks(chunks)
  await index.persist()
  context = await index.query("Describe the project objective", k=5)

Requires: faiss-cpu, numpy.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Set, Tuple

import faiss
import numpy as np

from ragreport.core.errors import NotFoundError, PersistenceError, ProviderError
from ragreport.core.logging import get_logger
from ragreport.embeddings.embeddings import EmbeddingProvider
from ragreport.storage.documents import VECTOR_STORE, DocumentStore

logger = get_logger(__name__)

INDEX_BLOB = "index.faiss"
DOCSTORE_BLOB = "docstore.json"
CONFIG_BLOB = "index-config.json"
INDEX_TYPE = "IndexFlatIP"
METRIC = "cosine"


class Chunk:
    """Represents a text chunk with metadata."""

    def __init__(self, content: str, metadata: Optional[Dict[str, Any]] = None, chunk_id: Optional[str] = None):
        self.content = content
        self.metadata = dict(metadata or {})
        self.chunk_id = chunk_id

    @property
    def original_file_name(self) -> Optional[str]:
        return self.metadata.get("originalFileName")

    def to_dict(self) -> Dict[str, Any]:
        return {"chunkId": self.chunk_id, "content": self.content, "metadata": self.metadata}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(data.get("content", ""), data.get("metadata") or {}, data.get("chunkId"))

    def __repr__(self) -> str:
        return f"Chunk(id={self.chunk_id!r}, source={self.metadata.get('source')!r}, chars={len(self.content)})"


def _normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return (vectors / norms).astype(np.float32)


class VectorIndex:
    """FAISS-based, append-only vector index for one workspace."""

    def __init__(self, store: DocumentStore, workspace: str, embedder: EmbeddingProvider,
                 index: faiss.Index, docstore: List[Chunk]):
        """
        Wrap an existing FAISS index and its docstore.

        Use `load`, `initialize` or `load_or_initialize` rather than calling this directly.

        Args:
            store: Blob store the index is persisted to.
            workspace: Owning workspace.
            embedder: Provider used for chunks and queries.
            index: FAISS index whose rows match `docstore` one to one.
            docstore: Ordered chunk log.
        """
        if index.ntotal != len(docstore):
            raise PersistenceError(
                f"Index for workspace {workspace!r} has {index.ntotal} vectors "
                f"but {len(docstore)} docstore entries"
            )
        self.store = store
        self.workspace = workspace
        self.embedder = embedder
        self.index = index
        self.docstore = docstore

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------
    @classmethod
    async def load(cls, store: DocumentStore, workspace: str, embedder: EmbeddingProvider) -> "VectorIndex":
        """Restore a persisted index; raises NotFoundError when none exists yet."""
        if not await store.exists(workspace, VECTOR_STORE, INDEX_BLOB):
            raise NotFoundError(f"No vector index for workspace {workspace!r}")

        try:
            raw_index = await store.read(workspace, VECTOR_STORE, INDEX_BLOB)
            raw_docstore = await store.read(workspace, VECTOR_STORE, DOCSTORE_BLOB)
            raw_config = await store.read(workspace, VECTOR_STORE, CONFIG_BLOB)
        except NotFoundError as exc:
            raise PersistenceError(f"Incomplete vector store for workspace {workspace!r}: {exc}") from exc
        try:
            index = faiss.deserialize_index(np.frombuffer(raw_index, dtype=np.uint8).copy())
            docstore = [Chunk.from_dict(entry) for entry in json.loads(raw_docstore)]
            config = json.loads(raw_config)
        except (RuntimeError, ValueError, TypeError, AttributeError) as exc:
            raise PersistenceError(f"Corrupt vector store for workspace {workspace!r}: {exc}") from exc

        if config.get("dimension") != index.d:
            raise PersistenceError(
                f"Index config dimension {config.get('dimension')} does not match index dimension {index.d}"
            )
        docstore = cls._reconcile(workspace, index, docstore)
        logger.info(f"Loaded index for {workspace} with {index.ntotal} vectors and {len(docstore)} docstore entries")
        return cls(store, workspace, embedder, index, docstore)

    @staticmethod
    def _reconcile(workspace: str, index: faiss.Index, docstore: List[Chunk]) -> List[Chunk]:
        """
        Roll back a persist that wrote only one of the index and docstore blobs.

        Both are append-only and row-aligned, so their common prefix is the last
        state written in full; the longer side is trimmed to it.
        """
        committed = min(index.ntotal, len(docstore))
        if index.ntotal > committed:
            logger.warning(
                f"Index for {workspace} has {index.ntotal} vectors but {len(docstore)} docstore entries; "
                f"dropping {index.ntotal - committed} uncommitted vectors",
                extra={"workspace": workspace},
            )
            index.remove_ids(np.arange(committed, index.ntotal, dtype=np.int64))
        elif len(docstore) > committed:
            logger.warning(
                f"Docstore for {workspace} has {len(docstore)} entries but the index has {index.ntotal} vectors; "
                f"dropping {len(docstore) - committed} uncommitted entries",
                extra={"workspace": workspace},
            )
            docstore = docstore[:committed]
        return docstore

    @classmethod
    async def initialize(cls, store: DocumentStore, workspace: str, embedder: EmbeddingProvider) -> "VectorIndex":
        """Create a fresh in-memory index seeded with the workspace name as placeholder chunk."""
        placeholder = Chunk(workspace, {})
        vector = await cls._embed_one(embedder, placeholder.content)
        index = faiss.IndexFlatIP(vector.shape[1])
        vector_index = cls(store, workspace, embedder, index, [])
        vector_index._append([placeholder], vector)
        logger.info(f"Initialized vector index for {workspace} (dim: {index.d})")
        return vector_index

    @classmethod
    async def load_or_initialize(cls, store: DocumentStore, workspace: str,
                                 embedder: EmbeddingProvider) -> "VectorIndex":
        try:
            return await cls.load(store, workspace, embedder)
        except NotFoundError:
            return await cls.initialize(store, workspace, embedder)

    # ------------------------------------------------------------------
    # mutation
    # ------------------------------------------------------------------
    async def add_chunks(self, chunks: List[Chunk]) -> int:
        """
        Embed chunks one at a time and append them to the index and docstore.

        Every chunk is embedded before anything is appended, so a provider failure
        leaves both structures untouched.

        Args:
            chunks: Chunks to add, in order.

        Returns:
            Number of chunks appended.
        """
        if not chunks:
            return 0
        vectors = []
        for chunk in chunks:
            vector = await self._embed_one(self.embedder, chunk.content)
            if vector.shape[1] != self.index.d:
                raise ProviderError(
                    f"Embedding dimension {vector.shape[1]} does not match index dimension {self.index.d}"
                )
            vectors.append(vector)
        self._append(chunks, np.vstack(vectors))
        logger.debug(f"Added {len(chunks)} chunks to {self.workspace}. Total vectors: {self.index.ntotal}")
        return len(chunks)

    def _append(self, chunks: List[Chunk], matrix: np.ndarray) -> None:
        start = len(self.docstore)
        for offset, chunk in enumerate(chunks):
            chunk.chunk_id = str(start + offset)
        self.index.add(_normalize(matrix))
        self.docstore.extend(chunks)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    async def search(self, text: str, k: int = 5) -> List[Tuple[Chunk, float]]:
        """
        Perform similarity search.

        Args:
            text: Query text, embedded with the same provider as the chunks.
            k: Number of nearest chunks.

        Returns:
            List of (chunk, cosine similarity) pairs, most similar first.
        """
        k = min(k, self.index.ntotal)
        if k <= 0:
            return []
        query = _normalize(await self._embed_one(self.embedder, text))
        if query.shape[1] != self.index.d:
            raise ProviderError(
                f"Query embedding dimension {query.shape[1]} does not match index dimension {self.index.d}"
            )
        # exhaustive ranking so equal scores can be ordered by row id
        scores, ids = self.index.search(query, self.index.ntotal)
        order = np.lexsort((ids[0], -scores[0]))[:k]
        return [(self.docstore[int(ids[0][i])], float(scores[0][i])) for i in order]

    async def query(self, text: str, k: int = 5) -> List[Chunk]:
        return [chunk for chunk, _ in await self.search(text, k)]

    def processed_file_names(self) -> Set[str]:
        """File names already embedded, read from docstore `originalFileName` metadata."""
        return {chunk.original_file_name for chunk in self.docstore if chunk.original_file_name}

    def __len__(self) -> int:
        return len(self.docstore)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------
    async def persist(self) -> None:
        """Write index, docstore and index config back to the store, replacing prior versions."""
        config = {
            "dimension": self.index.d,
            "metric": METRIC,
            "index_type": INDEX_TYPE,
            "size": self.index.ntotal,
        }
        index_bytes = faiss.serialize_index(self.index).tobytes()
        docstore_bytes = json.dumps([chunk.to_dict() for chunk in self.docstore], indent=2).encode("utf-8")

        await self.store.write(self.workspace, VECTOR_STORE, CONFIG_BLOB, json.dumps(config, indent=2).encode("utf-8"))
        await self.store.write(self.workspace, VECTOR_STORE, INDEX_BLOB, index_bytes)
        await self.store.write(self.workspace, VECTOR_STORE, DOCSTORE_BLOB, docstore_bytes)
        logger.info(f"Saved index for {self.workspace} (vectors: {self.index.ntotal})")

    @staticmethod
    async def _embed_one(embedder: EmbeddingProvider, text: str) -> np.ndarray:
        vector = np.asarray(await embedder.embed(text), dtype=np.float32)
        if vector.ndim != 1 or vector.size == 0:
            raise ProviderError(f"Embedding provider returned an invalid vector of shape {vector.shape}")
        return vector.reshape(1, -1)
