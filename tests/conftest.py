"""Pytest configuration and fixtures.

Providers are deterministic fakes: the embedder hashes tokens into a small bag-of-words
vector, the completion provider echoes the question. FAISS runs for real.
"""

import asyncio
import os
import zlib

os.environ.setdefault("RAGREPORT_ENV", "test")

import numpy as np
import pytest

from ragreport.core.errors import PersistenceError, ProviderError
from ragreport.generation.prompts import PromptBank, PromptSpec
from ragreport.ingestion.ingestion import ChunkSplitter
from ragreport.storage.documents import RESULTS, InMemoryDocumentStore, LocalDocumentStore
from ragreport.workspaces.workspaces import WorkspaceService

DIM = 64


class FakeEmbedder:
    """Token-hashing embedder; texts sharing words get similar vectors."""

    def __init__(self, dim=DIM, fail_on=()):
        self.dim = dim
        self.fail_on = set(fail_on)
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        for marker in self.fail_on:
            if marker in text:
                raise ProviderError(f"embedding quota exceeded for {marker!r}")
        vector = np.zeros(self.dim, dtype=np.float32)
        for token in text.lower().split():
            vector[zlib.crc32(token.encode("utf-8")) % self.dim] += 1.0
        if not vector.any():
            vector[0] = 1.0
        return vector.tolist()


class FakeCompletion:
    """Answers with a markdown heading built from the QUESTION line of the prompt."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        await asyncio.sleep(0)
        for marker in self.fail_on:
            if marker in prompt:
                raise ProviderError(f"completion timed out for {marker!r}")
        question = prompt.split("QUESTION: ", 1)[1].splitlines()[0]
        return f"# {question}\nAnswer number {len(self.prompts)}."


def question_of(prompt):
    return prompt.split("QUESTION: ", 1)[1].splitlines()[0]


@pytest.fixture
def memory_store():
    return InMemoryDocumentStore()


@pytest.fixture
def local_store(tmp_path):
    return LocalDocumentStore(str(tmp_path / "workspaces"))


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def completion():
    return FakeCompletion()


@pytest.fixture
def bank():
    """Three-section bank with distinct questions."""
    return PromptBank([
        PromptSpec("A", "Describe the alpha objective", extra_rules="Return one paragraph", examples="# Alpha"),
        PromptSpec("B", "Describe the beta hypothesis"),
        PromptSpec("C", "Describe the gamma results"),
    ])


@pytest.fixture
def splitter():
    return ChunkSplitter(chunk_size=200, overlap=20)


@pytest.fixture
def service(memory_store, embedder, completion, bank, splitter):
    return WorkspaceService(memory_store, embedder, completion, prompt_bank=bank, splitter=splitter)


class FailingWriteStore:
    """Wraps a store and refuses writes to one category, or to one blob of it."""

    def __init__(self, inner, category=RESULTS, name=None):
        self.inner = inner
        self.category = category
        self.name = name

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def write(self, workspace, category, name, data):
        if category == self.category and self.name in (None, name):
            raise PersistenceError("disk full")
        await self.inner.write(workspace, category, name, data)
