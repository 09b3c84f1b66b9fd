from __future__ import annotations

from datetime import datetime

import pytest
from botocore.exceptions import EndpointConnectionError

from knowledge_engine.retrieval.errors import InvalidQueryError, RetrievalUnavailableError
from knowledge_engine.retrieval.hybrid_search import HybridSearchEngine, is_usable_embedding
from knowledge_engine.retrieval.models import IndexHit, SourceType

from .conftest import FakeEmbeddings, FakeIndexStore, IndexRow


def _rows() -> list[IndexRow]:
    return [
        IndexRow(id="s1", content="launch plan", document_id="d1", block_id="b1",
                 lexical=0.8, vector=0.2),
        IndexRow(id="s2", content="launch budget", document_id="d2", block_id="b1",
                 lexical=0.3, vector=0.9),
        IndexRow(id="s3", content="vector only", document_id="d3", block_id="b1",
                 vector=0.6),
        IndexRow(id="s4", content="launch notes", document_id="d4", block_id="b1",
                 lexical=0.5),
    ]


def _hit(key: str, score: float, created_at: datetime | None = None) -> IndexHit:
    return IndexHit(
        id=key, content=key, document_id=key, block_id=None, score=score,
        created_at=created_at,
    )


@pytest.mark.asyncio
async def test_combined_score_weights_both_predicates() -> None:
    engine = HybridSearchEngine(FakeIndexStore(rows=_rows()), FakeEmbeddings())

    result = await engine.search("launch", "ws-1", vector_weight=0.5)
    scores = {c.id: c.score for c in result.results}

    assert scores["s1"] == pytest.approx(0.5)
    assert scores["s2"] == pytest.approx(0.6)
    assert scores["s3"] == pytest.approx(0.3)
    assert scores["s4"] == pytest.approx(0.25)
    assert [c.id for c in result.results] == ["s2", "s1", "s3", "s4"]
    assert all(c.source_type is SourceType.HYBRID for c in result.results)
    assert result.total == 4


def test_merge_is_commutative_in_predicate_order() -> None:
    lexical = [_hit("a", 0.7), _hit("b", 0.4)]
    vector = [_hit("b", 0.9), _hit("c", 0.5)]

    forward = HybridSearchEngine.merge(lexical, vector, 0.3)
    # Swapping which list plays lexical vs vector and flipping the weight
    # assigns each side the same contribution.
    swapped = HybridSearchEngine.merge(vector, lexical, 0.7)

    assert {h.key: s for h, s in forward} == pytest.approx(
        {h.key: s for h, s in swapped}
    )


def test_merge_breaks_ties_by_recency() -> None:
    older = _hit("old", 0.5, created_at=datetime(2024, 1, 1))
    newer = _hit("new", 0.5, created_at=datetime(2024, 6, 1))

    ranked = HybridSearchEngine.merge([older, newer], [], 0.0)

    assert [h.id for h, _ in ranked] == ["new", "old"]


def test_merge_drops_non_positive_scores() -> None:
    ranked = HybridSearchEngine.merge([_hit("a", 0.4)], [_hit("b", 0.9)], 0.0)

    assert [h.id for h, _ in ranked] == ["a"]


@pytest.mark.asyncio
async def test_empty_embedding_degrades_to_lexical_order() -> None:
    store = FakeIndexStore(rows=_rows())
    degraded = HybridSearchEngine(store, FakeEmbeddings(vector=[]))

    hybrid = await degraded.search("launch", "ws-1", vector_weight=0.0)
    lexical_only = await degraded.search("launch", "ws-1", hybrid=False)

    assert [c.id for c in hybrid.results] == ["s1", "s4", "s2"]
    assert [c.id for c in hybrid.results] == [c.id for c in lexical_only.results]
    assert [c.score for c in hybrid.results] == [c.score for c in lexical_only.results]
    assert not any(op == "vector" for op, _ in store.calls)


@pytest.mark.asyncio
async def test_all_zero_embedding_skips_vector_predicate() -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, FakeEmbeddings(vector=[0.0, 0.0]))

    result = await engine.search("launch", "ws-1", vector_weight=0.5)

    assert not any(op == "vector" for op, _ in store.calls)
    assert [c.id for c in result.results] == ["s1", "s4", "s2"]
    assert result.results[0].score == pytest.approx(0.4)


class _UnreachableEmbeddings:
    async def embed(self, text: str) -> list[float]:
        raise EndpointConnectionError(endpoint_url="https://bedrock-runtime.us-east-1.amazonaws.com")


@pytest.mark.asyncio
async def test_embedding_outage_degrades_to_lexical_ranking() -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, _UnreachableEmbeddings())

    result = await engine.search("launch", "ws-1", vector_weight=0.5)

    assert not any(op == "vector" for op, _ in store.calls)
    assert [c.id for c in result.results] == ["s1", "s4", "s2"]
    assert result.results[0].score == pytest.approx(0.4)


@pytest.mark.asyncio
async def test_lexical_only_search_labels_sources() -> None:
    engine = HybridSearchEngine(FakeIndexStore(rows=_rows()), FakeEmbeddings())

    result = await engine.search("launch", "ws-1", hybrid=False)

    assert all(c.source_type is SourceType.LEXICAL for c in result.results)
    assert [c.score for c in result.results] == pytest.approx([0.8, 0.5, 0.3])
    assert result.total == 3


@pytest.mark.asyncio
async def test_paging_fetches_offset_plus_limit() -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, FakeEmbeddings())

    full = await engine.search("launch", "ws-1", limit=4)
    store.calls.clear()
    page = await engine.search("launch", "ws-1", limit=2, offset=1)

    assert [c.id for c in page.results] == [c.id for c in full.results[1:3]]
    assert ("lexical", 3) in store.calls
    assert ("vector", 3) in store.calls


@pytest.mark.asyncio
async def test_count_failure_falls_back_to_candidates() -> None:
    store = FakeIndexStore(rows=_rows(), fail_count=True)
    engine = HybridSearchEngine(store, FakeEmbeddings())

    result = await engine.search("launch", "ws-1")

    assert result.total == 4


@pytest.mark.asyncio
async def test_probe_skips_total_count() -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, FakeEmbeddings())

    await engine.search("launch", "ws-1", limit=1, include_total=False)

    assert not any(op == "count" for op, _ in store.calls)


@pytest.mark.asyncio
async def test_workspace_isolation() -> None:
    rows = _rows() + [
        IndexRow(id="other", content="launch", document_id="dx", lexical=0.99,
                 workspace_id="ws-2"),
    ]
    engine = HybridSearchEngine(FakeIndexStore(rows=rows), FakeEmbeddings())

    result = await engine.search("launch", "ws-1")

    assert "other" not in {c.id for c in result.results}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("query", "workspace_id", "kwargs"),
    [
        ("", "ws-1", {}),
        ("   ", "ws-1", {}),
        ("q", "", {}),
        ("q", "ws-1", {"limit": 0}),
        ("q", "ws-1", {"offset": -1}),
        ("q", "ws-1", {"vector_weight": 1.5}),
        ("q", "ws-1", {"vector_weight": -0.1}),
    ],
)
async def test_invalid_arguments_rejected_before_store_calls(
    query: str, workspace_id: str, kwargs: dict
) -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, FakeEmbeddings())

    with pytest.raises(InvalidQueryError):
        await engine.search(query, workspace_id, **kwargs)

    assert store.calls == []


@pytest.mark.asyncio
async def test_store_failure_is_retrieval_unavailable() -> None:
    engine = HybridSearchEngine(FakeIndexStore(rows=_rows(), fail=True), FakeEmbeddings())

    with pytest.raises(RetrievalUnavailableError):
        await engine.search("launch", "ws-1")


@pytest.mark.asyncio
async def test_suggest_returns_prefixes_and_swallows_failures() -> None:
    store = FakeIndexStore(rows=_rows())
    engine = HybridSearchEngine(store, FakeEmbeddings())

    assert await engine.suggest("launch", "ws-1") == [
        "launch plan",
        "launch budget",
        "launch notes",
    ]
    assert await engine.suggest("  ", "ws-1") == []

    store.fail = True
    assert await engine.suggest("launch", "ws-1") == []


def test_is_usable_embedding() -> None:
    assert is_usable_embedding([0.0, 0.1])
    assert not is_usable_embedding([])
    assert not is_usable_embedding([0.0, 0.0])
    assert not is_usable_embedding(None)
