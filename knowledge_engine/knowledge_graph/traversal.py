"""
Neighborhood traversal over the knowledge graph.

Relationships are stored directed, but neighborhoods are undirected: an
entity's neighbors are reached through outgoing and incoming edges alike.

Semantics (shared by every GraphStore):
    depth = clamp(depth, 0, max_depth)
    hop 1 collects every edge touching the start entity; each further hop
    collects every edge touching an entity reached so far. Expansion stops
    after ``depth`` hops or as soon as a hop adds no new edge.
    The result holds the start entity (when it exists), every endpoint of a
    collected edge, and the collected edges, each exactly once.

Consequences:
    - depth 0 returns only the start entity and no relationships
    - the result never shrinks as depth grows (up to the clamp)

PostgresGraphStore computes this in one recursive CTE. Stores without
recursive queries (Neo4jGraphStore) drive ``expand_neighborhood`` with a
one-hop edge lookup.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable

import structlog

from knowledge_engine.retrieval.models import (
    KnowledgeEntity,
    KnowledgeRelationship,
    Neighborhood,
)

logger = structlog.get_logger(__name__)

DEFAULT_MAX_DEPTH = 3

EdgeFetcher = Callable[[set[str]], Awaitable[Iterable[KnowledgeRelationship]]]
EntityFetcher = Callable[[set[str]], Awaitable[Iterable[KnowledgeEntity]]]


def clamp_depth(depth: int, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    """Clamp a requested traversal depth into [0, max_depth]."""
    return max(0, min(int(depth), max_depth))


async def expand_neighborhood(
    start_id: str,
    depth: int,
    fetch_edges: EdgeFetcher,
    fetch_entities: EntityFetcher,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Neighborhood:
    """
    Breadth-first undirected expansion from ``start_id``.

    Args:
        start_id: Entity to expand from.
        depth: Requested hop count; clamped into [0, max_depth].
        fetch_edges: Returns all edges touching any of the given entity ids.
        fetch_entities: Returns the entities for the given ids (missing ids
            are simply absent).
        max_depth: Upper clamp.

    Returns:
        Neighborhood with entities ordered by hop distance, then discovery.
    """
    depth = clamp_depth(depth, max_depth)

    reached: dict[str, int] = {start_id: 0}
    edges: dict[str, KnowledgeRelationship] = {}
    frontier = {start_id}

    for hop in range(1, depth + 1):
        if not frontier:
            break

        new_edges = [e for e in await fetch_edges(frontier) if e.id not in edges]
        if not new_edges:
            break

        next_frontier: set[str] = set()
        for edge in new_edges:
            edges[edge.id] = edge
            for endpoint in (edge.source_entity_id, edge.target_entity_id):
                if endpoint not in reached:
                    reached[endpoint] = hop
                    next_frontier.add(endpoint)
        frontier = next_frontier

    entities_by_id = {e.id: e for e in await fetch_entities(set(reached))}
    ordered = sorted(reached, key=lambda entity_id: reached[entity_id])
    entities = tuple(entities_by_id[i] for i in ordered if i in entities_by_id)

    logger.debug(
        "neighborhood_expanded",
        start_id=start_id,
        depth=depth,
        entities=len(entities),
        relationships=len(edges),
    )

    return Neighborhood(entities=entities, relationships=tuple(edges.values()))


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "clamp_depth",
    "expand_neighborhood",
]
