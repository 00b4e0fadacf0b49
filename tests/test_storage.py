"""Tests for the document stores and the FAISS-backed VectorIndex."""

import json

import pytest

from ragreport.core.errors import NotFoundError, PersistenceError, ProviderError, ValidationError
from ragreport.storage.documents import UPLOADS, VECTOR_STORE, WORKSPACE
from ragreport.storage.storage import CONFIG_BLOB, DOCSTORE_BLOB, INDEX_BLOB, Chunk, VectorIndex

from conftest import FailingWriteStore, FakeEmbedder


def chunk(text, file_name="notes.txt"):
    return Chunk(text, {"source": f"memory://acme/uploads/{file_name}", "originalFileName": file_name})


@pytest.mark.asyncio
@pytest.mark.parametrize("store_fixture", ["memory_store", "local_store"])
async def test_store_write_read_list(request, store_fixture):
    """Blobs round-trip and are listed per category."""
    store = request.getfixturevalue(store_fixture)
    await store.write("acme", UPLOADS, "b.txt", b"beta")
    await store.write("acme", UPLOADS, "a.txt", b"alpha")
    await store.write("other", UPLOADS, "c.txt", b"gamma")

    assert await store.read("acme", UPLOADS, "a.txt") == b"alpha"
    assert await store.exists("acme", UPLOADS, "b.txt")
    assert not await store.exists("acme", UPLOADS, "c.txt")
    assert await store.list_files("acme", UPLOADS) == ["a.txt", "b.txt"]
    assert await store.list_files("acme", "results") == []

    with pytest.raises(NotFoundError):
        await store.read("acme", UPLOADS, "missing.txt")


@pytest.mark.asyncio
async def test_local_store_rejects_path_segments(local_store):
    with pytest.raises(ValidationError):
        await local_store.write("..", UPLOADS, "a.txt", b"x")
    with pytest.raises(ValidationError):
        await local_store.read("acme", UPLOADS, "../../etc/passwd")


@pytest.mark.asyncio
async def test_local_store_replaces_blob_without_leftovers(local_store):
    await local_store.write("acme", UPLOADS, "a.txt", b"first")
    await local_store.write("acme", UPLOADS, "a.txt", b"second")

    assert await local_store.read("acme", UPLOADS, "a.txt") == b"second"
    directory = local_store.root / "acme" / UPLOADS
    assert sorted(p.name for p in directory.iterdir()) == ["a.txt"]


@pytest.mark.asyncio
@pytest.mark.parametrize("store_fixture", ["memory_store", "local_store"])
async def test_list_workspaces_requires_marker(request, store_fixture):
    store = request.getfixturevalue(store_fixture)
    await store.write("zeta", WORKSPACE, "workspace.json", b"{}")
    await store.write("acme", WORKSPACE, "workspace.json", b"{}")
    await store.write("stray", UPLOADS, "a.txt", b"x")

    assert await store.list_workspaces() == ["acme", "zeta"]


@pytest.mark.asyncio
async def test_initialize_seeds_placeholder(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)

    assert len(index) == 1
    assert index.index.ntotal == 1
    assert index.docstore[0].content == "acme"
    assert index.docstore[0].metadata == {}
    assert index.processed_file_names() == set()
    # initialize does not persist
    assert not await memory_store.exists("acme", VECTOR_STORE, INDEX_BLOB)


@pytest.mark.asyncio
async def test_load_missing_index_raises_not_found(memory_store, embedder):
    with pytest.raises(NotFoundError):
        await VectorIndex.load(memory_store, "acme", embedder)


@pytest.mark.asyncio
@pytest.mark.parametrize("store_fixture", ["memory_store", "local_store"])
async def test_persist_and_load(request, store_fixture, embedder):
    """A persisted index reloads with the same vectors, docstore and config."""
    store = request.getfixturevalue(store_fixture)
    index = await VectorIndex.initialize(store, "acme", embedder)
    await index.add_chunks([chunk("solar panel efficiency"), chunk("battery storage chemistry", "b.txt")])
    await index.persist()

    reloaded = await VectorIndex.load(store, "acme", embedder)
    assert reloaded.index.ntotal == 3 == len(reloaded)
    assert [c.content for c in reloaded.docstore] == ["acme", "solar panel efficiency", "battery storage chemistry"]
    assert [c.chunk_id for c in reloaded.docstore] == ["0", "1", "2"]
    assert reloaded.processed_file_names() == {"notes.txt", "b.txt"}

    config = json.loads(await store.read("acme", VECTOR_STORE, CONFIG_BLOB))
    assert config["dimension"] == embedder.dim
    assert config["size"] == 3


@pytest.mark.asyncio
async def test_search_orders_by_similarity(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.add_chunks([
        chunk("quarterly revenue grew strongly"),
        chunk("novel catalyst improves reaction yield"),
        chunk("staff picnic schedule"),
    ])

    results = await index.search("catalyst reaction yield", k=2)

    assert len(results) == 2
    assert results[0][0].content == "novel catalyst improves reaction yield"
    assert results[0][1] >= results[1][1]


@pytest.mark.asyncio
async def test_search_breaks_ties_by_insertion_order(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.add_chunks([chunk("identical text", "first.txt"), chunk("identical text", "second.txt")])

    results = await index.search("identical text", k=2)

    assert [c.original_file_name for c, _ in results] == ["first.txt", "second.txt"]
    assert results[0][1] == pytest.approx(results[1][1])


@pytest.mark.asyncio
async def test_search_k_larger_than_index(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.add_chunks([chunk("only chunk")])

    results = await index.query("anything", k=5)

    assert len(results) == 2


@pytest.mark.asyncio
async def test_add_chunks_failure_leaves_index_untouched(memory_store):
    embedder = FakeEmbedder(fail_on=["poison"])
    index = await VectorIndex.initialize(memory_store, "acme", embedder)

    with pytest.raises(ProviderError):
        await index.add_chunks([chunk("fine text"), chunk("poison pill")])

    assert len(index) == 1
    assert index.index.ntotal == 1


@pytest.mark.asyncio
async def test_dimension_change_is_rejected(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    index.embedder = FakeEmbedder(dim=embedder.dim * 2)

    with pytest.raises(ProviderError):
        await index.add_chunks([chunk("different space")])


@pytest.mark.asyncio
async def test_orphan_docstore_entries_are_dropped_on_load(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.persist()
    docstore = json.loads(await memory_store.read("acme", VECTOR_STORE, DOCSTORE_BLOB))
    docstore.append(chunk("orphan").to_dict())
    await memory_store.write("acme", VECTOR_STORE, DOCSTORE_BLOB, json.dumps(docstore).encode())

    loaded = await VectorIndex.load(memory_store, "acme", embedder)

    assert loaded.index.ntotal == len(loaded.docstore) == 1
    assert loaded.processed_file_names() == set()


@pytest.mark.asyncio
async def test_vectors_without_docstore_entries_are_dropped_on_load(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.add_chunks([chunk("rockets burn fuel", "a.txt")])
    await index.persist()
    await index.add_chunks([chunk("boats float on water", "b.txt")])

    with pytest.raises(PersistenceError):
        await VectorIndex(FailingWriteStore(memory_store, VECTOR_STORE, DOCSTORE_BLOB), "acme", embedder,
                          index.index, index.docstore).persist()

    loaded = await VectorIndex.load(memory_store, "acme", embedder)

    assert loaded.index.ntotal == len(loaded.docstore) == 2
    assert loaded.processed_file_names() == {"a.txt"}
    results = await loaded.search("boats float on water", k=5)
    assert [c.original_file_name for c, _ in results if c.original_file_name] == ["a.txt"]
    await loaded.add_chunks([chunk("boats float on water", "b.txt")])
    assert [c.chunk_id for c in loaded.docstore] == ["0", "1", "2"]


@pytest.mark.asyncio
async def test_corrupt_or_incomplete_store_is_not_reinitialized(memory_store, embedder):
    index = await VectorIndex.initialize(memory_store, "acme", embedder)
    await index.persist()
    await memory_store.write("acme", VECTOR_STORE, DOCSTORE_BLOB, b"not json")

    with pytest.raises(PersistenceError):
        await VectorIndex.load_or_initialize(memory_store, "acme", embedder)

    await memory_store.write("other", VECTOR_STORE, INDEX_BLOB, await memory_store.read("acme", VECTOR_STORE, INDEX_BLOB))
    with pytest.raises(PersistenceError):
        await VectorIndex.load_or_initialize(memory_store, "other", embedder)
