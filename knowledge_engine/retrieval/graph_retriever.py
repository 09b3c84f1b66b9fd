"""
GraphRAG retrieval: vector + lexical + knowledge-graph context, fused by RRF.

Architecture:
    query ──┬─> embed ─> vector lookup (top_k) ───────────────┐
            ├─> lexical lookup (top_k) ───────────────────────┤
            └─> entities matching first token (≤5)            │
                    └─> neighborhood(depth 2) per entity ─────┤  (concurrent)
                            └─> rendered summary chunk         │
                                                               ↓
                          RRF([vector, lexical, graph]) → top_k sources
                                                               ↓
                          AnswerSynthesizer (top 6 chunks) → answer + citations

Graph chunk format (one per matched entity that has relationships):
    "<name>（<type>）相關聯的實體：n1(t1)、n2(t2)。關係：r1、r2"
    id "kg-<entity_id>", pseudo-score 0.8

Graceful Degradation:
    Every sub-query runs under its own timeout. A sub-query that times out
    or fails contributes an empty list; the query still answers from the
    remaining sources.

Usage:
    retriever = GraphRetriever(index_store, graph_store, embeddings, synthesizer)
    result = await retriever.retrieve("Acme 與 Globex 的關係", "ws-1", top_k=10)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from dataclasses import replace
from typing import TypeVar

import structlog

from knowledge_engine.retrieval.errors import InvalidQueryError
from knowledge_engine.retrieval.hybrid_search import is_usable_embedding
from knowledge_engine.retrieval.interfaces import EmbeddingProvider, GraphStore, IndexStore
from knowledge_engine.retrieval.models import (
    GraphRetrievalResult,
    IndexHit,
    KnowledgeEntity,
    Neighborhood,
    RankedCandidate,
    SourceType,
)
from knowledge_engine.retrieval.synthesizer import AnswerSynthesizer
from knowledge_engine.utils.rrf import DEFAULT_K, rrf_fusion

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# =============================================================================
# Constants
# =============================================================================

DEFAULT_TRAVERSAL_DEPTH = 2
DEFAULT_GRAPH_CHUNK_SCORE = 0.8
DEFAULT_ENTITY_LIMIT = 5
DEFAULT_SUB_QUERY_TIMEOUT = 5.0

SOURCE_LABELS = ["vector", "lexical", "graph"]


def first_token(query: str) -> str:
    """The query's first whitespace-delimited token, used as entity keyword."""
    parts = query.split()
    return parts[0] if parts else ""


def render_neighborhood(
    entity: KnowledgeEntity,
    neighborhood: Neighborhood,
) -> str | None:
    """
    Summarize an entity's neighborhood as one text chunk.

    Every entity of the neighborhood is listed, the matched one included.
    Returns None when the neighborhood has no relationships.
    """
    if not neighborhood.relationships:
        return None

    members = "、".join(e.label for e in neighborhood.entities)
    relations = "、".join(r.relation_type for r in neighborhood.relationships)
    return f"{entity.name}（{entity.entity_type}）相關聯的實體：{members}。關係：{relations}"


def _to_candidates(hits: list[IndexHit], source_type: SourceType) -> list[RankedCandidate]:
    return [
        RankedCandidate(
            id=hit.id,
            content=hit.content,
            document_id=hit.document_id,
            block_id=hit.block_id,
            title=hit.title,
            score=hit.score,
            source_type=source_type,
        )
        for hit in hits
    ]


# =============================================================================
# GraphRetriever Class
# =============================================================================


class GraphRetriever:
    """
    Graph Retrieval Engine.

    Attributes:
        rrf_k: RRF smoothing constant.
        traversal_depth: Neighborhood depth per matched entity.
        chunk_score: Score carried by rendered graph chunks before fusion.
        entity_limit: Maximum matched entities.
        sub_query_timeout: Seconds allowed per sub-query.
    """

    def __init__(
        self,
        index_store: IndexStore,
        graph_store: GraphStore,
        embeddings: EmbeddingProvider,
        synthesizer: AnswerSynthesizer,
        rrf_k: int = DEFAULT_K,
        traversal_depth: int = DEFAULT_TRAVERSAL_DEPTH,
        chunk_score: float = DEFAULT_GRAPH_CHUNK_SCORE,
        entity_limit: int = DEFAULT_ENTITY_LIMIT,
        sub_query_timeout: float = DEFAULT_SUB_QUERY_TIMEOUT,
    ) -> None:
        self._index_store = index_store
        self._graph_store = graph_store
        self._embeddings = embeddings
        self._synthesizer = synthesizer
        self.rrf_k = rrf_k
        self.traversal_depth = traversal_depth
        self.chunk_score = chunk_score
        self.entity_limit = entity_limit
        self.sub_query_timeout = sub_query_timeout
        self._log = logger.bind(component="graph_retriever")

    async def _guarded(self, source: str, awaitable: Awaitable[T], fallback: T) -> T:
        """Await with the sub-query timeout; timeout or failure gives ``fallback``."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.sub_query_timeout)
        except asyncio.TimeoutError:
            self._log.warning(
                "graph_sub_query_timeout",
                source=source,
                timeout_seconds=self.sub_query_timeout,
            )
        except Exception as e:
            self._log.warning(
                "graph_sub_query_failed",
                source=source,
                error=str(e),
                error_type=type(e).__name__,
            )
        return fallback

    # -------------------------------------------------------------------------
    # Sub-queries
    # -------------------------------------------------------------------------

    async def _vector_candidates(
        self, query: str, workspace_id: str, top_k: int
    ) -> list[RankedCandidate]:
        async def run() -> list[RankedCandidate]:
            embedding = await self._embeddings.embed(query)
            if not is_usable_embedding(embedding):
                return []
            hits = await self._index_store.query_vector(workspace_id, embedding, None, top_k)
            return _to_candidates(hits, SourceType.VECTOR)

        return await self._guarded("vector", run(), [])

    async def _lexical_candidates(
        self, query: str, workspace_id: str, top_k: int
    ) -> list[RankedCandidate]:
        async def run() -> list[RankedCandidate]:
            hits = await self._index_store.query_lexical(workspace_id, query, None, top_k)
            return _to_candidates(hits, SourceType.LEXICAL)

        return await self._guarded("lexical", run(), [])

    async def _graph_chunk(self, entity: KnowledgeEntity) -> RankedCandidate | None:
        neighborhood = await self._guarded(
            "neighborhood",
            self._graph_store.get_neighborhood(entity.id, self.traversal_depth),
            Neighborhood(),
        )
        content = render_neighborhood(entity, neighborhood)
        if content is None:
            return None
        return RankedCandidate(
            id=f"kg-{entity.id}",
            content=content,
            document_id=entity.document_id,
            score=self.chunk_score,
            source_type=SourceType.GRAPH,
        )

    async def _graph_candidates(
        self, query: str, workspace_id: str
    ) -> tuple[list[KnowledgeEntity], list[RankedCandidate]]:
        keyword = first_token(query)
        if not keyword:
            return [], []

        entities = await self._guarded(
            "entities",
            self._graph_store.find_entities_by_keyword(
                workspace_id, keyword, self.entity_limit
            ),
            [],
        )
        entities = entities[: self.entity_limit]
        if not entities:
            return [], []

        chunks = await asyncio.gather(*(self._graph_chunk(e) for e in entities))
        return entities, [chunk for chunk in chunks if chunk is not None]

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def retrieve(
        self,
        query: str,
        workspace_id: str,
        top_k: int = 10,
    ) -> GraphRetrievalResult:
        """
        Answer ``query`` from fused vector, lexical and graph context.

        Raises:
            InvalidQueryError: For a blank query or workspace id, or top_k < 1.
        """
        if not query or not query.strip():
            raise InvalidQueryError("query is required")
        if not workspace_id:
            raise InvalidQueryError("workspace_id is required")
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k < 1:
            raise InvalidQueryError(f"top_k must be a positive integer, got {top_k!r}")

        self._log.info(
            "graph_retrieval_started",
            query=query[:100],
            workspace_id=workspace_id,
            top_k=top_k,
        )

        vector, lexical, (entities, graph_chunks) = await asyncio.gather(
            self._vector_candidates(query, workspace_id, top_k),
            self._lexical_candidates(query, workspace_id, top_k),
            self._graph_candidates(query, workspace_id),
        )

        fused = rrf_fusion(
            [vector, lexical, graph_chunks],
            k=self.rrf_k,
            source_labels=SOURCE_LABELS,
        )[:top_k]
        sources = tuple(replace(r["item"], score=r["rrf_score"]) for r in fused)

        synthesis = await self._synthesizer.synthesize(query, sources, style="graph")

        self._log.info(
            "graph_retrieval_complete",
            vector_hits=len(vector),
            lexical_hits=len(lexical),
            matched_entities=len(entities),
            graph_chunks=len(graph_chunks),
            sources=len(sources),
            citations=len(synthesis.citations),
        )

        return GraphRetrievalResult(
            answer=synthesis.answer,
            sources=sources,
            entities=tuple(entities),
            citations=synthesis.citations,
        )


__all__ = [
    "GraphRetriever",
    "first_token",
    "render_neighborhood",
]
