"""Tests for hybrid search orchestration and document ingestion."""

import asyncio
from uuid import uuid4

import pytest

from app.hybrid.search_manager import SearchBackendError, SearchManager
from app.ingestion.chunker import ChunkingConfig
from app.ingestion.indexer import DocumentIndexer
from libs.common.metrics import MetricsCollector
from libs.document_store.base import (
    DocumentStoreConflictError,
    DocumentStoreNotFoundError,
    DocumentStoreQueryError,
)
from libs.document_store.memory import InMemoryStore
from .conftest import TEST_DIMENSION, HashingEmbedder, words


class ScriptedStore(InMemoryStore):
    """In-memory store whose raw lookups are replaced by coroutines."""

    def __init__(self, semantic=None, keyword=None):
        super().__init__(vector_dimension=TEST_DIMENSION)
        self._semantic = semantic
        self._keyword = keyword

    async def semantic_scores(self, query_vector, limit):
        return await self._semantic()

    async def keyword_scores(self, query):
        return await self._keyword()


def returning(value):
    async def lookup():
        return value
    return lookup


def failing(error):
    async def lookup():
        raise error
    return lookup


def blocking(started: asyncio.Event, cancelled: asyncio.Event):
    async def lookup():
        started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return {}
    return lookup


class FailingEmbedder(HashingEmbedder):
    async def embed_many(self, texts, purpose="document"):
        raise RuntimeError("model unavailable")


async def seed(store, embedder):
    indexer = DocumentIndexer(store, embedder)
    client = await indexer.create_client("Ada", "Lovelace", "Ada@Example.com", description="Analyst")
    passport = await indexer.create_document(
        client.id, "Passport", "Scanned passport used as identity proof for onboarding"
    )
    bill = await indexer.create_document(
        client.id, "Utility bill", "Electricity bill showing the residential address"
    )
    return client, passport, bill


@pytest.mark.asyncio
async def test_search_ranks_lexical_match_first(memory_store, embedder):
    client, passport, _ = await seed(memory_store, embedder)
    manager = SearchManager(memory_store, embedder)

    results = await manager.search("  passport identity  ")

    assert results.query == "passport identity"
    assert results.documents
    assert results.documents[0].document.id == passport.id
    assert results.documents[0].score >= 0.25
    assert results.total == len(results.clients) + len(results.documents)


@pytest.mark.asyncio
async def test_search_returns_matching_clients(memory_store, embedder):
    client, _, _ = await seed(memory_store, embedder)
    manager = SearchManager(memory_store, embedder)

    results = await manager.search("lovelace")

    assert [c.id for c in results.clients] == [client.id]


@pytest.mark.asyncio
async def test_query_embedded_once(memory_store, embedder):
    await seed(memory_store, embedder)
    embedder.calls.clear()
    manager = SearchManager(memory_store, embedder)

    await manager.rank_documents("address")

    assert embedder.calls == [["address"]]


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["", "   ", "\t\n", None])
async def test_blank_query_rejected(memory_store, embedder, query):
    manager = SearchManager(memory_store, embedder)
    with pytest.raises(ValueError):
        await manager.search(query)


@pytest.mark.asyncio
async def test_non_finite_semantic_scores_dropped(embedder):
    good, nan_id, inf_id = uuid4(), uuid4(), uuid4()
    store = ScriptedStore(
        semantic=returning({good: 0.9, nan_id: float("nan"), inf_id: float("inf")}),
        keyword=returning({}),
    )
    manager = SearchManager(store, embedder)

    ranked = await manager.rank_documents("anything")

    assert [entry.item_id for entry in ranked] == [good]


@pytest.mark.asyncio
async def test_non_finite_semantic_with_keyword_match_uses_keyword(embedder):
    item = uuid4()
    store = ScriptedStore(semantic=returning({item: float("nan")}), keyword=returning({item: 1.0}))
    manager = SearchManager(store, embedder)

    ranked = await manager.rank_documents("anything")

    assert [(entry.item_id, entry.score) for entry in ranked] == [(item, pytest.approx(0.3))]


@pytest.mark.asyncio
async def test_lookup_failure_cancels_sibling(embedder):
    started, cancelled = asyncio.Event(), asyncio.Event()
    store = ScriptedStore(
        semantic=blocking(started, cancelled),
        keyword=failing(DocumentStoreQueryError("fts exploded")),
    )
    manager = SearchManager(store, embedder)

    with pytest.raises(SearchBackendError) as exc_info:
        await manager.rank_documents("anything")

    assert isinstance(exc_info.value.__cause__, DocumentStoreQueryError)
    assert cancelled.is_set()


@pytest.mark.asyncio
async def test_semantic_failure_propagates(embedder):
    store = ScriptedStore(semantic=failing(RuntimeError("index gone")), keyword=returning({uuid4(): 1.0}))
    manager = SearchManager(store, embedder)

    with pytest.raises(SearchBackendError):
        await manager.rank_documents("anything")


@pytest.mark.asyncio
async def test_embedding_failure_propagates(memory_store):
    manager = SearchManager(memory_store, FailingEmbedder())

    with pytest.raises(SearchBackendError):
        await manager.search("passport")


@pytest.mark.asyncio
async def test_cancelling_query_cancels_both_lookups(embedder):
    semantic_started, semantic_cancelled = asyncio.Event(), asyncio.Event()
    keyword_started, keyword_cancelled = asyncio.Event(), asyncio.Event()
    store = ScriptedStore(
        semantic=blocking(semantic_started, semantic_cancelled),
        keyword=blocking(keyword_started, keyword_cancelled),
    )
    manager = SearchManager(store, embedder)

    task = asyncio.create_task(manager.rank_documents("anything"))
    await asyncio.wait_for(semantic_started.wait(), timeout=5)
    await asyncio.wait_for(keyword_started.wait(), timeout=5)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert semantic_cancelled.is_set()
    assert keyword_cancelled.is_set()


@pytest.mark.asyncio
async def test_search_records_metrics(memory_store, embedder):
    metrics = MetricsCollector("test-search")
    await seed(memory_store, embedder)
    manager = SearchManager(memory_store, embedder, metrics=metrics)

    await manager.search("passport")

    assert 'search_requests_total{query_type="hybrid",status="success"} 1.0' in metrics.get_metrics()


@pytest.mark.asyncio
async def test_health_check(memory_store, embedder):
    assert await SearchManager(memory_store, embedder).health_check() is True


@pytest.mark.asyncio
async def test_indexer_chunks_and_embeds_in_one_batch(memory_store, embedder):
    indexer = DocumentIndexer(memory_store, embedder, ChunkingConfig())
    client = await indexer.create_client("Grace", "Hopper", "GRACE@navy.mil")
    embedder.calls.clear()

    document = await indexer.create_document(client.id, "Compiler notes", words(180))

    assert client.email == "grace@navy.mil"
    assert len(embedder.calls) == 1
    assert len(embedder.calls[0]) == 2
    assert len(memory_store._chunks[document.id]) == 2
    assert document.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_indexer_rejects_unknown_client(memory_store, embedder):
    indexer = DocumentIndexer(memory_store, embedder)

    with pytest.raises(DocumentStoreNotFoundError, match="Client not found"):
        await indexer.create_document(uuid4(), "Title", "content")


@pytest.mark.asyncio
async def test_indexer_detects_duplicate_title_before_embedding(memory_store, embedder):
    indexer = DocumentIndexer(memory_store, embedder)
    client = await indexer.create_client("Grace", "Hopper", "grace@navy.mil")
    await indexer.create_document(client.id, "Compiler Notes", "first")
    embedder.calls.clear()

    with pytest.raises(DocumentStoreConflictError, match="title already exists"):
        await indexer.create_document(client.id, "compiler notes", "second")
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_indexer_rejects_duplicate_email(memory_store, embedder):
    indexer = DocumentIndexer(memory_store, embedder)
    await indexer.create_client("Grace", "Hopper", "grace@navy.mil")

    with pytest.raises(DocumentStoreConflictError, match="email already exists"):
        await indexer.create_client("G", "H", "Grace@Navy.mil")


@pytest.mark.asyncio
async def test_client_lookup_failure_is_backend_error(embedder):
    store = ScriptedStore(semantic=returning({}), keyword=returning({}))

    async def broken_search_clients(query):
        raise DocumentStoreQueryError("clients table missing")

    store.search_clients = broken_search_clients
    manager = SearchManager(store, embedder)

    with pytest.raises(SearchBackendError, match="Client lookup failed"):
        await manager.search("ada")


@pytest.mark.asyncio
async def test_ranking_bug_is_not_reported_as_backend_error(memory_store, embedder):
    metrics = MetricsCollector("test-search-errors")
    await seed(memory_store, embedder)
    manager = SearchManager(memory_store, embedder, metrics=metrics)

    def broken_fuse(semantic_scores, keyword_scores):
        raise TypeError("bad fusion input")

    manager.fusion.fuse_results = broken_fuse

    with pytest.raises(TypeError, match="bad fusion input"):
        await manager.search("passport")
    assert 'search_requests_total{query_type="hybrid",status="error"} 1.0' in metrics.get_metrics()
