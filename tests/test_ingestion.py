"""Tests for document loading, chunking and incremental ingestion."""

import io

import pytest
from docx import Document

from ragreport.core.errors import DocumentLoadError, PersistenceError, UnsupportedFormatError
from ragreport.ingestion.ingestion import ChunkSplitter, IngestionPipeline
from ragreport.ingestion.loaders import DocumentLoader
from ragreport.storage.documents import UPLOADS, VECTOR_STORE
from ragreport.storage.storage import DOCSTORE_BLOB, INDEX_BLOB, VectorIndex

from conftest import FailingWriteStore, FakeEmbedder

LONG_TEXT = " ".join(f"Paragraph {i} describes experiment {i} and its measured outcome." for i in range(40))


def docx_bytes(*paragraphs):
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def test_splitter_respects_size():
    splitter = ChunkSplitter(chunk_size=200, overlap=20)
    chunks = splitter.split(LONG_TEXT)

    assert len(chunks) > 1
    assert all(len(piece) <= 200 for piece in chunks)
    assert splitter.split("   ") == []


def test_splitter_rejects_bad_parameters():
    with pytest.raises(ValueError):
        ChunkSplitter(chunk_size=0)
    with pytest.raises(ValueError):
        ChunkSplitter(chunk_size=100, overlap=100)


def test_loader_text_and_docx():
    loader = DocumentLoader()

    assert loader.load("héllo".encode("utf-8"), ".txt") == "héllo"
    assert "First line\nSecond line" in loader.load(docx_bytes("First line", "Second line"), ".docx")
    assert "Legacy" in loader.load(docx_bytes("Legacy name"), "doc")


def test_loader_errors():
    loader = DocumentLoader()

    with pytest.raises(UnsupportedFormatError):
        loader.load(b"data", ".xlsx")
    with pytest.raises(DocumentLoadError):
        loader.load(b"this is not a pdf", ".pdf")


@pytest.fixture
def pipeline(memory_store, embedder, splitter):
    return IngestionPipeline(memory_store, embedder, splitter=splitter)


@pytest.mark.asyncio
async def test_ingest_new_file(memory_store, embedder, pipeline):
    await memory_store.write("acme", UPLOADS, "spec.txt", LONG_TEXT.encode())

    report = await pipeline.process("acme", ["spec.txt"])

    assert report.processed == ["spec.txt"]
    assert report.skipped == []
    assert report.chunks_added > 1

    index = await VectorIndex.load(memory_store, "acme", embedder)
    assert len(index) == 1 + report.chunks_added
    assert index.index.ntotal == len(index.docstore)
    metadata = index.docstore[1].metadata
    assert metadata == {"source": "memory://acme/uploads/spec.txt", "originalFileName": "spec.txt"}


@pytest.mark.asyncio
async def test_ingest_is_idempotent(memory_store, embedder, pipeline):
    await memory_store.write("acme", UPLOADS, "spec.txt", LONG_TEXT.encode())
    await pipeline.process("acme", ["spec.txt"])
    size = len(await VectorIndex.load(memory_store, "acme", embedder))
    calls = len(embedder.calls)

    report = await pipeline.process("acme", ["spec.txt"])

    assert report.processed == []
    assert report.skipped == ["spec.txt"]
    assert report.reasons["spec.txt"] == "already processed"
    assert len(await VectorIndex.load(memory_store, "acme", embedder)) == size
    assert len(embedder.calls) == calls


@pytest.mark.asyncio
async def test_same_file_twice_in_one_batch(memory_store, pipeline):
    await memory_store.write("acme", UPLOADS, "spec.txt", LONG_TEXT.encode())

    report = await pipeline.process("acme", ["spec.txt", "spec.txt"])

    assert report.processed == ["spec.txt"]
    assert report.skipped == ["spec.txt"]


@pytest.mark.asyncio
async def test_partial_failure_isolation(memory_store, embedder, pipeline):
    """One broken document does not stop the other two."""
    await memory_store.write("acme", UPLOADS, "a.txt", b"alpha document about rockets")
    await memory_store.write("acme", UPLOADS, "broken.pdf", b"%PDF-garbage")
    await memory_store.write("acme", UPLOADS, "c.txt", b"gamma document about boats")

    report = await pipeline.process("acme", ["a.txt", "broken.pdf", "c.txt"])

    assert report.processed == ["a.txt", "c.txt"]
    assert report.skipped == ["broken.pdf"]
    index = await VectorIndex.load(memory_store, "acme", embedder)
    assert index.processed_file_names() == {"a.txt", "c.txt"}


@pytest.mark.asyncio
async def test_skip_reasons(memory_store, splitter):
    embedder = FakeEmbedder(fail_on=["quota"])
    pipeline = IngestionPipeline(memory_store, embedder, splitter=splitter)
    await memory_store.write("acme", UPLOADS, "sheet.xlsx", b"cells")
    await memory_store.write("acme", UPLOADS, "empty.txt", b"   \n  ")
    await memory_store.write("acme", UPLOADS, "quota.txt", b"this text trips the quota")
    await memory_store.write("acme", UPLOADS, "ok.txt", b"fine content")

    report = await pipeline.process("acme", ["sheet.xlsx", "empty.txt", "quota.txt", "missing.txt", "ok.txt"])

    assert report.processed == ["ok.txt"]
    assert report.skipped == ["sheet.xlsx", "empty.txt", "quota.txt", "missing.txt"]
    assert report.reasons["sheet.xlsx"].startswith("unsupported format")
    assert report.reasons["empty.txt"] == "no extractable text"
    assert "quota" in report.reasons["quota.txt"]


@pytest.mark.asyncio
async def test_nothing_processed_is_not_persisted(memory_store, pipeline):
    await memory_store.write("acme", UPLOADS, "sheet.xlsx", b"cells")

    report = await pipeline.process("acme", ["sheet.xlsx"])

    assert report.processed == []
    assert not await memory_store.exists("acme", VECTOR_STORE, INDEX_BLOB)


@pytest.mark.asyncio
async def test_invalid_file_name_is_skipped(local_store, embedder, splitter):
    pipeline = IngestionPipeline(local_store, embedder, splitter=splitter)
    await local_store.write("acme", UPLOADS, "a.txt", b"alpha document about rockets")

    report = await pipeline.process("acme", ["../secret.txt", "a.txt"])

    assert report.processed == ["a.txt"]
    assert report.skipped == ["../secret.txt"]
    assert "Invalid file name" in report.reasons["../secret.txt"]


@pytest.mark.asyncio
async def test_failed_docstore_write_leaves_index_loadable(memory_store, embedder, pipeline, splitter):
    """A persist that stores the index but not the docstore rolls back to the last full save."""
    await memory_store.write("acme", UPLOADS, "a.txt", b"alpha document about rockets")
    await memory_store.write("acme", UPLOADS, "b.txt", b"beta document about boats")
    await pipeline.process("acme", ["a.txt"])
    committed = len(await VectorIndex.load(memory_store, "acme", embedder))

    failing = IngestionPipeline(FailingWriteStore(memory_store, VECTOR_STORE, DOCSTORE_BLOB), embedder,
                                splitter=splitter)
    with pytest.raises(PersistenceError):
        await failing.process("acme", ["b.txt"])

    index = await VectorIndex.load(memory_store, "acme", embedder)
    assert index.index.ntotal == len(index.docstore) == committed
    assert index.processed_file_names() == {"a.txt"}

    report = await pipeline.process("acme", ["b.txt"])

    assert report.processed == ["b.txt"]
    index = await VectorIndex.load(memory_store, "acme", embedder)
    assert index.index.ntotal == len(index.docstore)
    assert index.processed_file_names() == {"a.txt", "b.txt"}
