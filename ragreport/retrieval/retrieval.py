"""Retrieval Module for the RAG report generator

This module fetches the context a report question is answered from: it embeds the
question, searches the workspace vector index and joins the top-k chunks into the
CONTEXT block of the prompt.

Key Features:
- Same embedding provider for queries and chunks (held by the VectorIndex).
- k defaults to 5; results are ordered by similarity, ties by insertion order.

Usage:
  from ragreport.retrieval.retrieval import Retriever
  retriever = Retriever(index, k=5)
  context = await retriever.context_for("Describe the Project Objective")
"""

from typing import List

from ragreport.storage.storage import Chunk, VectorIndex


class Retriever:
    """Top-k context retrieval over one workspace index."""

    def __init__(self, index: VectorIndex, k: int = 5):
        self.index = index
        self.k = k

    async def retrieve(self, query: str) -> List[Chunk]:
        return await self.index.query(query, self.k)

    async def context_for(self, query: str) -> str:
        """Retrieve and join the chunk contents, most relevant first."""
        return self.format_context(await self.retrieve(query))

    @staticmethod
    def format_context(chunks: List[Chunk]) -> str:
        return "\n\n".join(chunk.content.strip() for chunk in chunks if chunk.content.strip())

