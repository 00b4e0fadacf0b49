"""Embeddings Module for the RAG report generator

This module maps text to fixed-dimension vectors for indexing and retrieval.
Chunks and queries must go through the same provider so their vectors share a space.

Key Features:
- SentenceTransformerEmbeddings: local HuggingFace model ('all-MiniLM-L6-v2', 384 dims by default),
  encoded on a worker thread so the event loop is never blocked.
- OpenAIEmbeddings: OpenAI or Azure OpenAI embeddings through the async `openai` client.
- Provider failures surface as ProviderError so ingestion can skip the file and carry on.

Usage:
  from ragreport.embeddings.embeddings import get_embedding_provider
  embedder = get_embedding_provider(settings)
  vector = await embedder.embed("Describe the project objective")

Requires: sentence-transformers (local backend), openai (remote backends).
"""
from __future__ import annotations

import asyncio
from typing import List, Protocol

from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError

from ragreport.core.config import Settings
from ragreport.core.errors import ProviderError, ValidationError
from ragreport.core.logging import get_logger

logger = get_logger(__name__)


class EmbeddingProvider(Protocol):
    """Maps text to a fixed-dimension vector."""

    async def embed(self, text: str) -> List[float]: ...


class SentenceTransformerEmbeddings:
    """Handles embedding generation using HuggingFace sentence-transformers models."""

    def __init__(self, model_name: str = 'all-MiniLM-L6-v2', device: str = 'cpu'):
        """
        Initialize the embedding model.

        Args:
            model_name: HuggingFace model identifier.
            device: 'cpu' or 'cuda' for GPU acceleration.
        """
        from sentence_transformers import SentenceTransformer

        self.model_name = model_name
        self.model = SentenceTransformer(model_name, device=device)
        self.embedding_dim = self.model.get_sentence_embedding_dimension()
        logger.info(f"Loaded {model_name} model (dim: {self.embedding_dim}) on {device}")

    async def embed(self, text: str) -> List[float]:
        try:
            vectors = await asyncio.to_thread(self.model.encode, [text], show_progress_bar=False)
        except Exception as exc:
            raise ProviderError(f"{self.model_name} failed to embed text: {exc}") from exc
        return vectors[0].tolist()


class OpenAIEmbeddings:
    """Embeddings served by OpenAI or an Azure OpenAI deployment."""

    def __init__(self, client: AsyncOpenAI, model: str):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self.client.embeddings.create(model=self.model, input=[text])
        except OpenAIError as exc:
            raise ProviderError(f"Embedding request to {self.model} failed: {exc}") from exc
        if not response.data:
            raise ProviderError(f"Embedding request to {self.model} returned no vectors")
        return list(response.data[0].embedding)


def openai_client(settings: Settings, backend: str) -> AsyncOpenAI:
    """Build the async OpenAI client for `backend` ('openai' or 'azure')."""
    if backend == "azure":
        if not settings.AZURE_OPENAI_KEY or not settings.AZURE_OPENAI_ENDPOINT:
            raise ValidationError("AZURE_OPENAI_KEY and AZURE_OPENAI_ENDPOINT are required for the azure backend")
        return AsyncAzureOpenAI(
            api_key=settings.AZURE_OPENAI_KEY,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            api_version=settings.AZURE_OPENAI_VERSION,
            max_retries=settings.PROVIDER_MAX_RETRIES,
        )
    if backend == "openai":
        if not settings.OPENAI_API_KEY:
            raise ValidationError("OPENAI_API_KEY is required for the openai backend")
        return AsyncOpenAI(
            api_key=settings.OPENAI_API_KEY,
            base_url=settings.OPENAI_BASE_URL,
            max_retries=settings.PROVIDER_MAX_RETRIES,
        )
    raise ValidationError(f"Unknown provider backend: {backend}")


def get_embedding_provider(settings: Settings) -> EmbeddingProvider:
    backend = settings.EMBEDDING_BACKEND
    if backend == "sentence-transformers":
        return SentenceTransformerEmbeddings(settings.EMBEDDING_MODEL, settings.EMBEDDING_DEVICE)
    if backend == "azure":
        deployment = settings.AZURE_OPENAI_EMBEDDINGS_DEPLOYMENT_NAME or settings.EMBEDDING_MODEL
        return OpenAIEmbeddings(openai_client(settings, backend), deployment)
    return OpenAIEmbeddings(openai_client(settings, backend), settings.EMBEDDING_MODEL)
