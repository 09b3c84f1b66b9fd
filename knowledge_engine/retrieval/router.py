"""
Mode routing between hybrid search and graph retrieval.

Decision table (first matching row wins):

    requested   condition                                   mode    reason
    ---------   -----------------------------------------   ------  -----------------------------------------
    hybrid      -                                           hybrid  forced_hybrid_mode
    graph       -                                           graph   forced_graph_mode
    auto        query shows relational intent               graph   auto_graph_query_intent
    auto        entity hit and probe top score < threshold  graph   auto_graph_entity_hit_low_hybrid(<s:.2f>)
    auto        otherwise                                   hybrid  auto_hybrid_top_score(<s:.2f>)

The two signals (keyword entity hits, hybrid probe top score) are gathered
concurrently. The decision itself is a pure function of
(query, requested mode, entity hit count, top score), so the same request
against the same store state always routes the same way.
"""

from __future__ import annotations

import asyncio
import re

import structlog

from knowledge_engine.knowledge_graph.store import GraphStoreError
from knowledge_engine.retrieval.errors import InvalidQueryError
from knowledge_engine.retrieval.graph_retriever import first_token
from knowledge_engine.retrieval.hybrid_search import HybridSearchEngine
from knowledge_engine.retrieval.interfaces import GraphStore
from knowledge_engine.retrieval.models import (
    HybridSearchResult,
    KnowledgeEntity,
    RetrievalMode,
    RoutingDecision,
)

logger = structlog.get_logger(__name__)

DEFAULT_GRAPH_ROUTE_THRESHOLD = 0.55
DEFAULT_ENTITY_LIMIT = 6

# English terms must stand alone among Latin letters; CJK neighbors are fine.
GRAPH_INTENT_PATTERN = re.compile(
    r"(關係|關聯|脈絡|因果|影響|網絡|關於.*之間"
    r"|(?<![A-Za-z])(?:graph|network|between|relationships?|relations?|causes?|causal)"
    r"(?![A-Za-z]))",
    re.IGNORECASE,
)


def has_graph_intent(query: str) -> bool:
    """True when the query asks about relations between things."""
    return GRAPH_INTENT_PATTERN.search(query) is not None


def parse_mode(mode: str | RetrievalMode | None) -> RetrievalMode:
    """Normalize a requested mode; None means auto."""
    if mode is None:
        return RetrievalMode.AUTO
    if isinstance(mode, RetrievalMode):
        return mode
    try:
        return RetrievalMode(str(mode).strip().lower())
    except ValueError as e:
        raise InvalidQueryError(
            f"mode must be one of auto, hybrid, graph; got {mode!r}"
        ) from e


def select_mode(
    query: str,
    requested: RetrievalMode,
    entity_hit_count: int,
    hybrid_top_score: float,
    threshold: float = DEFAULT_GRAPH_ROUTE_THRESHOLD,
) -> tuple[RetrievalMode, str]:
    """Apply the decision table. Pure."""
    if requested is RetrievalMode.HYBRID:
        return RetrievalMode.HYBRID, "forced_hybrid_mode"
    if requested is RetrievalMode.GRAPH:
        return RetrievalMode.GRAPH, "forced_graph_mode"

    if has_graph_intent(query):
        return RetrievalMode.GRAPH, "auto_graph_query_intent"
    if entity_hit_count > 0 and hybrid_top_score < threshold:
        return (
            RetrievalMode.GRAPH,
            f"auto_graph_entity_hit_low_hybrid({hybrid_top_score:.2f})",
        )
    return RetrievalMode.HYBRID, f"auto_hybrid_top_score({hybrid_top_score:.2f})"


class ModeRouter:
    """Chooses the retrieval strategy for a query."""

    def __init__(
        self,
        hybrid_engine: HybridSearchEngine,
        graph_store: GraphStore,
        threshold: float = DEFAULT_GRAPH_ROUTE_THRESHOLD,
        entity_limit: int = DEFAULT_ENTITY_LIMIT,
    ) -> None:
        self._hybrid = hybrid_engine
        self._graph_store = graph_store
        self.threshold = threshold
        self.entity_limit = entity_limit
        self._log = logger.bind(component="mode_router")

    async def entity_hits(self, query: str, workspace_id: str) -> list[KnowledgeEntity]:
        """Keyword entity lookup on the first query token. Store failure gives []."""
        keyword = first_token(query)
        if not keyword:
            return []
        try:
            hits = await self._graph_store.find_entities_by_keyword(
                workspace_id, keyword, self.entity_limit
            )
        except GraphStoreError as e:
            self._log.warning("entity_lookup_failed", error=str(e))
            return []
        return hits[: self.entity_limit]

    async def gather_signals(
        self,
        query: str,
        workspace_id: str,
        probe_limit: int = 1,
    ) -> tuple[list[KnowledgeEntity], HybridSearchResult]:
        """
        Run the entity lookup and a hybrid probe concurrently.

        Raises:
            RetrievalUnavailableError: If the hybrid probe cannot reach the index.
        """
        return await asyncio.gather(
            self.entity_hits(query, workspace_id),
            self._hybrid.search(
                query, workspace_id, limit=probe_limit, include_total=False
            ),
        )

    def decide(
        self,
        query: str,
        requested: RetrievalMode,
        entity_hits: list[KnowledgeEntity],
        hybrid_top_score: float,
    ) -> RoutingDecision:
        mode_used, reason = select_mode(
            query, requested, len(entity_hits), hybrid_top_score, self.threshold
        )
        self._log.info(
            "mode_routed",
            requested_mode=requested.value,
            mode_used=mode_used.value,
            routing_reason=reason,
            entity_hits=len(entity_hits),
            hybrid_top_score=round(hybrid_top_score, 4),
        )
        return RoutingDecision(
            mode_used=mode_used,
            routing_reason=reason,
            entity_hits=tuple(entity_hits),
            hybrid_top_score=hybrid_top_score,
        )

    async def route(
        self,
        query: str,
        workspace_id: str,
        requested_mode: str | RetrievalMode | None = RetrievalMode.AUTO,
    ) -> RoutingDecision:
        """
        Route a request. Forced modes skip the probes entirely.

        Raises:
            InvalidQueryError: For a blank query/workspace or unknown mode.
            RetrievalUnavailableError: If the auto probe cannot reach the index.
        """
        requested = parse_mode(requested_mode)
        if not query or not query.strip():
            raise InvalidQueryError("query is required")
        if not workspace_id:
            raise InvalidQueryError("workspace_id is required")

        if requested is not RetrievalMode.AUTO:
            return self.decide(query, requested, [], 0.0)

        entity_hits, probe = await self.gather_signals(query, workspace_id, probe_limit=1)
        top_score = probe.results[0].score if probe.results else 0.0
        return self.decide(query, requested, entity_hits, top_score)


__all__ = [
    "ModeRouter",
    "GRAPH_INTENT_PATTERN",
    "has_graph_intent",
    "parse_mode",
    "select_mode",
]
