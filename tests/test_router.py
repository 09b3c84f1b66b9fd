from __future__ import annotations

import pytest

from knowledge_engine.retrieval.errors import InvalidQueryError, RetrievalUnavailableError
from knowledge_engine.retrieval.hybrid_search import HybridSearchEngine
from knowledge_engine.retrieval.models import RetrievalMode
from knowledge_engine.retrieval.router import (
    ModeRouter,
    has_graph_intent,
    parse_mode,
    select_mode,
)

from .conftest import FakeEmbeddings, FakeGraphStore, FakeIndexStore, IndexRow


def _router(index: FakeIndexStore, graph: FakeGraphStore) -> ModeRouter:
    return ModeRouter(HybridSearchEngine(index, FakeEmbeddings()), graph)


def _row(score: float) -> IndexRow:
    """A block scoring `score` on both predicates, so its combined score is `score`."""
    return IndexRow(id="c1", content="Acme", document_id="d1", lexical=score, vector=score)


# -----------------------------------------------------------------------------
# Pure decision table
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("query", "requested", "hits", "score", "expected"),
    [
        ("Acme 的關係", RetrievalMode.HYBRID, 3, 0.1, (RetrievalMode.HYBRID, "forced_hybrid_mode")),
        ("Acme revenue", RetrievalMode.GRAPH, 0, 0.9, (RetrievalMode.GRAPH, "forced_graph_mode")),
        ("Acme 與 Globex 的關係", RetrievalMode.AUTO, 0, 0.9,
         (RetrievalMode.GRAPH, "auto_graph_query_intent")),
        ("Acme revenue", RetrievalMode.AUTO, 1, 0.3,
         (RetrievalMode.GRAPH, "auto_graph_entity_hit_low_hybrid(0.30)")),
        ("Acme revenue", RetrievalMode.AUTO, 1, 0.9,
         (RetrievalMode.HYBRID, "auto_hybrid_top_score(0.90)")),
        ("Acme revenue", RetrievalMode.AUTO, 0, 0.1,
         (RetrievalMode.HYBRID, "auto_hybrid_top_score(0.10)")),
        ("Acme revenue", RetrievalMode.AUTO, 1, 0.55,
         (RetrievalMode.HYBRID, "auto_hybrid_top_score(0.55)")),
    ],
)
def test_select_mode(query, requested, hits, score, expected) -> None:
    assert select_mode(query, requested, hits, score) == expected


@pytest.mark.parametrize(
    "query",
    [
        "Acme 與 Globex 的關係",
        "供應鏈的因果",
        "產業網絡",
        "關於 Acme 和 Globex 之間",
        "relationship between Acme and Globex",
        "Show the GRAPH",
        "what causes churn",
    ],
)
def test_relational_intent_detected(query: str) -> None:
    assert has_graph_intent(query)


@pytest.mark.parametrize(
    "query",
    ["Acme revenue 2024", "networking event", "graphite supply", "causeway project"],
)
def test_relational_intent_not_detected(query: str) -> None:
    assert not has_graph_intent(query)


def test_parse_mode() -> None:
    assert parse_mode(None) is RetrievalMode.AUTO
    assert parse_mode(" Graph ") is RetrievalMode.GRAPH
    assert parse_mode(RetrievalMode.HYBRID) is RetrievalMode.HYBRID
    with pytest.raises(InvalidQueryError):
        parse_mode("vector")


# -----------------------------------------------------------------------------
# ModeRouter over stores
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_forced_modes_skip_probes() -> None:
    index, graph = FakeIndexStore(), FakeGraphStore()
    router = _router(index, graph)

    decision = await router.route("Acme", "ws-1", "graph")

    assert decision.mode_used is RetrievalMode.GRAPH
    assert decision.routing_reason == "forced_graph_mode"
    assert index.calls == []
    assert graph.keyword_calls == []


@pytest.mark.asyncio
async def test_empty_index_routes_to_hybrid() -> None:
    decision = await _router(FakeIndexStore(), FakeGraphStore()).route("Acme", "ws-1")

    assert decision.mode_used is RetrievalMode.HYBRID
    assert decision.routing_reason == "auto_hybrid_top_score(0.00)"


@pytest.mark.asyncio
async def test_intent_wins_with_zero_entities() -> None:
    decision = await _router(FakeIndexStore(), FakeGraphStore()).route(
        "Acme 與 Globex 的關係", "ws-1"
    )

    assert decision.mode_used is RetrievalMode.GRAPH
    assert decision.routing_reason == "auto_graph_query_intent"
    assert decision.entity_hits == ()


@pytest.mark.asyncio
async def test_entity_hit_with_strong_hybrid_routes_to_hybrid() -> None:
    index = FakeIndexStore(rows=[_row(0.9)])
    graph = FakeGraphStore()
    graph.add_entity("Acme", "org")

    decision = await _router(index, graph).route("Acme revenue", "ws-1")

    assert decision.mode_used is RetrievalMode.HYBRID
    assert decision.routing_reason == "auto_hybrid_top_score(0.90)"
    assert len(decision.entity_hits) == 1
    assert decision.hybrid_top_score == pytest.approx(0.9)


@pytest.mark.asyncio
async def test_entity_hit_with_weak_hybrid_routes_to_graph() -> None:
    index = FakeIndexStore(rows=[_row(0.2)])
    graph = FakeGraphStore()
    graph.add_entity("Acme", "org")

    decision = await _router(index, graph).route("Acme revenue", "ws-1")

    assert decision.mode_used is RetrievalMode.GRAPH
    assert decision.routing_reason == "auto_graph_entity_hit_low_hybrid(0.20)"


@pytest.mark.asyncio
async def test_probe_fetches_only_the_top_result() -> None:
    index = FakeIndexStore(rows=[_row(0.9)])
    graph = FakeGraphStore()

    await _router(index, graph).route("Acme", "ws-1")

    assert sorted(index.calls) == [("lexical", 1), ("vector", 1)]
    assert graph.keyword_calls == [("ws-1", "Acme", 6)]


@pytest.mark.asyncio
async def test_graph_store_failure_counts_as_no_entities() -> None:
    index = FakeIndexStore(rows=[_row(0.1)])
    graph = FakeGraphStore()
    graph.add_entity("Acme", "org")
    graph.fail = True

    decision = await _router(index, graph).route("Acme", "ws-1")

    assert decision.routing_reason == "auto_hybrid_top_score(0.10)"


@pytest.mark.asyncio
async def test_index_failure_is_fatal_for_auto_routing() -> None:
    with pytest.raises(RetrievalUnavailableError):
        await _router(FakeIndexStore(fail=True), FakeGraphStore()).route("Acme", "ws-1")


@pytest.mark.asyncio
async def test_routing_is_deterministic() -> None:
    index = FakeIndexStore(rows=[_row(0.4)])
    graph = FakeGraphStore()
    graph.add_entity("Acme", "org")
    router = _router(index, graph)

    decisions = {
        (d.mode_used, d.routing_reason)
        for d in [await router.route("Acme deals", "ws-1") for _ in range(5)]
    }

    assert decisions == {(RetrievalMode.GRAPH, "auto_graph_entity_hit_low_hybrid(0.40)")}


@pytest.mark.asyncio
async def test_route_validates_input() -> None:
    router = _router(FakeIndexStore(), FakeGraphStore())

    with pytest.raises(InvalidQueryError):
        await router.route("  ", "ws-1")
    with pytest.raises(InvalidQueryError):
        await router.route("Acme", "")
    with pytest.raises(InvalidQueryError):
        await router.route("Acme", "ws-1", "semantic")
