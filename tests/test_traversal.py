from __future__ import annotations

import pytest

from knowledge_engine.knowledge_graph.traversal import clamp_depth

from .conftest import FakeGraphStore


@pytest.fixture
def chain() -> FakeGraphStore:
    """a -> b <- c -> d -> e, plus an unrelated x -> y."""
    store = FakeGraphStore()
    a, b, c, d, e = (store.add_entity(n, "org", entity_id=n) for n in "abcde")
    x, y = (store.add_entity(n, "org", entity_id=n) for n in "xy")
    store.link(a, b, "partner")
    store.link(c, b, "supplies")
    store.link(c, d, "owns")
    store.link(d, e, "funds")
    store.link(x, y, "unrelated")
    return store


@pytest.mark.asyncio
async def test_depth_zero_is_only_the_start_entity(chain: FakeGraphStore) -> None:
    nb = await chain.get_neighborhood("a", 0)

    assert nb.entity_ids() == {"a"}
    assert nb.relationships == ()


@pytest.mark.asyncio
async def test_edges_are_followed_in_both_directions(chain: FakeGraphStore) -> None:
    one = await chain.get_neighborhood("b", 1)

    assert one.entity_ids() == {"a", "b", "c"}
    assert {r.relation_type for r in one.relationships} == {"partner", "supplies"}


@pytest.mark.asyncio
async def test_each_hop_expands_the_frontier(chain: FakeGraphStore) -> None:
    two = await chain.get_neighborhood("a", 2)
    three = await chain.get_neighborhood("a", 3)

    assert two.entity_ids() == {"a", "b", "c"}
    assert three.entity_ids() == {"a", "b", "c", "d"}
    assert "x" not in three.entity_ids()


@pytest.mark.asyncio
async def test_neighborhood_never_shrinks_with_depth(chain: FakeGraphStore) -> None:
    previous: set[str] = set()
    previous_rels: set[str] = set()
    for depth in range(0, 6):
        nb = await chain.get_neighborhood("a", depth)
        assert previous <= nb.entity_ids()
        assert previous_rels <= nb.relationship_ids()
        previous, previous_rels = nb.entity_ids(), nb.relationship_ids()


@pytest.mark.asyncio
async def test_depth_is_clamped_to_three(chain: FakeGraphStore) -> None:
    clamped = await chain.get_neighborhood("a", 10)
    three = await chain.get_neighborhood("a", 3)

    assert clamped.entity_ids() == three.entity_ids()
    assert "e" not in clamped.entity_ids()


@pytest.mark.asyncio
async def test_entities_and_relationships_are_unique(chain: FakeGraphStore) -> None:
    nb = await chain.get_neighborhood("c", 3)

    assert len(nb.entities) == len(nb.entity_ids())
    assert len(nb.relationships) == len(nb.relationship_ids())
    assert nb.entities[0].id == "c"


@pytest.mark.asyncio
async def test_unknown_entity_has_empty_neighborhood(chain: FakeGraphStore) -> None:
    nb = await chain.get_neighborhood("missing", 2)

    assert nb.entities == ()
    assert nb.relationships == ()


def test_clamp_depth() -> None:
    assert clamp_depth(-2) == 0
    assert clamp_depth(2) == 2
    assert clamp_depth(7) == 3
    assert clamp_depth(7, max_depth=5) == 5
