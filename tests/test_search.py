import io
from unittest.mock import AsyncMock

import pytest

from knowledge_index.core.errors import UnknownStrategyError
from knowledge_index.ingestion.models import IngestionOptions
from knowledge_index.search.hybrid import HybridSearchEngine
from knowledge_index.search.keyword import KeywordSearcher, normalize_ranks
from knowledge_index.search.models import SearchMode, SearchOptions
from knowledge_index.search.reranking import RerankerRegistry
from knowledge_index.search.vector import VectorSearcher
from knowledge_index.storage.models import SearchFilters, VectorCandidate


@pytest.fixture
def engine(store, settings_provider, provider_resolver):
    return HybridSearchEngine(
        VectorSearcher(store.vectors, provider_resolver),
        KeywordSearcher(store.keywords),
        settings_provider,
        RerankerRegistry(),
    )


async def _ingest(pipeline, document_id, text, scope_id="scope-a", path=None):
    result = await pipeline.ingest(
        io.BytesIO(text.encode()),
        document_id=document_id,
        path=path or f"{document_id}.txt",
        options=IngestionOptions(scope_id=scope_id, file_name=f"{document_id}.txt"),
    )
    assert result.success, result.error_message


# ---------------------------------------------------------------------
# Keyword normalization
# ---------------------------------------------------------------------

def test_normalize_ranks_min_max():
    assert normalize_ranks([0.2, 0.6, 0.4]) == pytest.approx([0.0, 1.0, 0.5])


def test_normalize_ranks_all_equal_maps_to_one():
    assert normalize_ranks([0.3, 0.3]) == [1.0, 1.0]
    assert normalize_ranks([]) == []


# ---------------------------------------------------------------------
# Vector retrieval
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_vector_search_overfetches_and_clamps(runtime_settings, embedder):
    index = AsyncMock()
    index.search.return_value = [
        VectorCandidate("c1", "d1", "close", -0.2, {}),
        VectorCandidate("c2", "d1", "far", 1.4, {}),
        VectorCandidate("c3", "d1", "middle", 0.4, {}),
    ]
    searcher = VectorSearcher(index, lambda config: embedder)

    hits = await searcher.search(
        "query",
        SearchFilters(scope_id="scope-a"),
        top_k=3,
        min_score=0.0,
        embedding=runtime_settings.embedding,
        search=runtime_settings.search,
    )

    assert index.search.await_args.args[1] == 3 * runtime_settings.search.vector_overfetch
    assert [h.chunk_id for h in hits] == ["c1", "c3", "c2"]
    assert [h.score for h in hits] == pytest.approx([1.0, 0.6, 0.0])
    assert all(h.metadata["source"] == "vector" for h in hits)


# ---------------------------------------------------------------------
# Hybrid engine
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_hybrid_finds_keyword_match(engine, pipeline):
    await _ingest(pipeline, "doc-1", "quarterly revenue growth")

    result = await engine.search("revenue growth", SearchOptions(scope_id="scope-a"))

    assert result.mode == SearchMode.HYBRID
    assert result.total_count == 1
    [hit] = result.hits
    assert hit.content == "quarterly revenue growth"
    assert hit.document_id == "doc-1"
    assert hit.metadata["contributions"]["keyword"] > 0
    assert hit.metadata["source"] == "hybrid"
    assert hit.metadata["reranker"] == "RRF"
    assert hit.score == pytest.approx(1.0)
    assert result.duration_ms >= 0


@pytest.mark.asyncio
async def test_keyword_mode_tags_source(engine, pipeline):
    await _ingest(pipeline, "doc-1", "quarterly revenue growth")
    await _ingest(pipeline, "doc-2", "annual revenue report with many other words in it")

    result = await engine.search(
        "revenue", SearchOptions(scope_id="scope-a", mode=SearchMode.KEYWORD)
    )

    assert [h.document_id for h in result.hits] == ["doc-1", "doc-2"]
    assert all(h.metadata["source"] == "keyword" for h in result.hits)
    assert result.hits[0].score == pytest.approx(1.0)
    assert result.hits[1].score == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_semantic_mode_min_score(engine, pipeline):
    await _ingest(pipeline, "doc-1", "quarterly revenue growth")

    strict = await engine.search(
        "revenue growth",
        SearchOptions(scope_id="scope-a", mode=SearchMode.SEMANTIC, min_score=0.99),
    )
    assert strict.hits == []
    assert strict.total_count == 0

    loose = await engine.search(
        "revenue growth",
        SearchOptions(scope_id="scope-a", mode=SearchMode.SEMANTIC, min_score=0.1),
    )
    assert len(loose.hits) == 1
    assert loose.hits[0].metadata["source"] == "vector"


@pytest.mark.asyncio
async def test_top_k_truncates(engine, pipeline):
    for n in range(5):
        await _ingest(pipeline, f"doc-{n}", f"revenue note number {n}")

    result = await engine.search("revenue", SearchOptions(scope_id="scope-a", top_k=2))

    assert len(result.hits) == 2
    assert result.total_count >= 2
    assert result.hits[0].score >= result.hits[1].score


@pytest.mark.asyncio
async def test_scope_isolation_and_filters(engine, pipeline):
    await _ingest(pipeline, "doc-1", "revenue in scope a", scope_id="scope-a", path="fin/a.txt")
    await _ingest(pipeline, "doc-2", "revenue in scope a too", scope_id="scope-a", path="ops/b.txt")
    await _ingest(pipeline, "doc-3", "revenue in scope b", scope_id="scope-b")

    result = await engine.search("revenue", SearchOptions(scope_id="scope-b"))
    assert {h.document_id for h in result.hits} == {"doc-3"}

    by_prefix = await engine.search("revenue", SearchOptions(scope_id="scope-a", path_prefix="fin/"))
    assert {h.document_id for h in by_prefix.hits} == {"doc-1"}

    by_document = await engine.search(
        "revenue", SearchOptions(scope_id="scope-a", filters={"document_id": "doc-2"})
    )
    assert {h.document_id for h in by_document.hits} == {"doc-2"}


@pytest.mark.asyncio
async def test_deleted_document_disappears(engine, pipeline, store):
    await _ingest(pipeline, "doc-1", "quarterly revenue growth")
    await _ingest(pipeline, "doc-2", "revenue forecast")

    await store.vectors.delete_by_document("doc-1")
    await store.documents.delete("doc-1")

    result = await engine.search("revenue growth", SearchOptions(scope_id="scope-a"))
    assert "doc-1" not in {h.document_id for h in result.hits}
    assert not [c for c in store.chunk_rows.values() if c.document_id == "doc-1"]
    assert not [v for v in store.vector_rows.values() if v.document_id == "doc-1"]


@pytest.mark.asyncio
async def test_blank_query_returns_empty(engine):
    result = await engine.search("   ", SearchOptions(scope_id="scope-a"))
    assert result.hits == [] and result.total_count == 0


@pytest.mark.asyncio
async def test_unknown_reranker(engine):
    with pytest.raises(UnknownStrategyError):
        await engine.search("revenue", SearchOptions(scope_id="scope-a", reranker="Magic"))


@pytest.mark.asyncio
async def test_none_reranker_dedupes(engine, pipeline):
    await _ingest(pipeline, "doc-1", "quarterly revenue growth")

    result = await engine.search(
        "revenue growth", SearchOptions(scope_id="scope-a", reranker="None")
    )
    assert len(result.hits) == 1
    assert result.hits[0].score == pytest.approx(1.0)
