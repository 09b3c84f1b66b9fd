"""
Knowledge query facade: routing, retrieval, synthesis, and streaming.

Architecture:
    knowledge_query(query, workspace_id, mode, top_k)
        │
        ├─ validate (InvalidQueryError before any store call)
        ├─ gather signals concurrently:
        │      entity keyword hits (≤6)  +  hybrid search (limit top_k)
        ├─ ModeRouter.decide → (mode_used, routing_reason)
        ├─ graph  → GraphRetriever.retrieve
        │  hybrid → AnswerSynthesizer over the hybrid results
        └─ RetrievalResult {answer, sources, entities, citations,
                            mode_used, routing_reason, debug}

    stream(...) yields the same result as events:
        {"type": "meta", ...}  one {"type": "token", "token": ch} per character
        {"type": "done"}       and on failure {"type": "error", ...} then done

Graceful Degradation:
    - Graph store: Optional - zero entity hits, graph chunks omitted
    - Embeddings: Optional - lexical-only ranking
    - Generative model: Optional - extractive (numbered context) answers
    - Search index: REQUIRED - RetrievalUnavailableError

Usage:
    service = build_knowledge_service(get_settings())
    result = await service.knowledge_query("Acme 的合作夥伴", "ws-1")
    print(result.mode_used, result.routing_reason, result.answer)
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import structlog

from knowledge_engine.config import Settings
from knowledge_engine.knowledge_graph.extractor import ExtractionResult, KnowledgeExtractor
from knowledge_engine.knowledge_graph.store import build_graph_store
from knowledge_engine.knowledge_graph.traversal import clamp_depth
from knowledge_engine.retrieval.errors import InvalidQueryError, KnowledgeEngineError
from knowledge_engine.retrieval.graph_retriever import GraphRetriever
from knowledge_engine.retrieval.hybrid_search import HybridSearchEngine
from knowledge_engine.retrieval.interfaces import (
    EmbeddingProvider,
    GenerativeModelProvider,
    GraphStore,
    IndexStore,
)
from knowledge_engine.retrieval.models import (
    GraphRetrievalResult,
    Neighborhood,
    RetrievalMode,
    RetrievalResult,
)
from knowledge_engine.retrieval.router import ModeRouter, parse_mode
from knowledge_engine.retrieval.synthesizer import AnswerSynthesizer

logger = structlog.get_logger(__name__)

DEFAULT_TOP_K = 10
MAX_TOP_K = 50


@dataclass
class KnowledgeService:
    """
    Entry point for knowledge queries.

    Construct once per process (see build_knowledge_service) and share; it
    holds no per-request state.
    """

    hybrid_engine: HybridSearchEngine
    graph_retriever: GraphRetriever
    router: ModeRouter
    synthesizer: AnswerSynthesizer
    graph_store: GraphStore
    extractor: KnowledgeExtractor
    default_top_k: int = DEFAULT_TOP_K
    max_top_k: int = MAX_TOP_K
    max_traversal_depth: int = 3
    index_store: IndexStore | None = None
    _log: Any = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self._log = logger.bind(component="knowledge_service")

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_request(
        self,
        query: str | None,
        workspace_id: str | None,
        mode: str | RetrievalMode | None,
        top_k: int | None,
    ) -> tuple[str, str, RetrievalMode, int]:
        query = (query or "").strip()
        workspace_id = (workspace_id or "").strip()
        if not query or not workspace_id:
            raise InvalidQueryError("query and workspace_id are required")

        requested = parse_mode(mode)

        if top_k is None:
            top_k = self.default_top_k
        if isinstance(top_k, bool) or not isinstance(top_k, int):
            raise InvalidQueryError(f"top_k must be an integer, got {top_k!r}")
        if not 1 <= top_k <= self.max_top_k:
            raise InvalidQueryError(
                f"top_k must be between 1 and {self.max_top_k}, got {top_k}"
            )
        return query, workspace_id, requested, top_k

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def knowledge_query(
        self,
        query: str,
        workspace_id: str,
        mode: str | RetrievalMode | None = RetrievalMode.AUTO,
        top_k: int | None = None,
    ) -> RetrievalResult:
        """
        Route, retrieve and synthesize.

        Raises:
            InvalidQueryError: Missing query/workspace id, unknown mode, bad top_k.
            RetrievalUnavailableError: Search index unreachable.
        """
        query, workspace_id, requested, top_k = self.validate_request(
            query, workspace_id, mode, top_k
        )

        entity_hits, hybrid = await self.router.gather_signals(
            query, workspace_id, probe_limit=top_k
        )
        top_score = hybrid.results[0].score if hybrid.results else 0.0
        decision = self.router.decide(query, requested, entity_hits, top_score)

        if decision.mode_used is RetrievalMode.GRAPH:
            graph = await self.graph_retriever.retrieve(query, workspace_id, top_k)
            result = RetrievalResult(
                answer=graph.answer,
                sources=graph.sources,
                entities=graph.entities,
                citations=graph.citations,
                mode_used=RetrievalMode.GRAPH,
                routing_reason=decision.routing_reason,
                entity_hits=len(entity_hits),
                hybrid_top_score=top_score,
            )
        else:
            synthesis = await self.synthesizer.synthesize(
                query, hybrid.results, style="hybrid"
            )
            result = RetrievalResult(
                answer=synthesis.answer,
                sources=hybrid.results,
                entities=tuple(entity_hits),
                citations=synthesis.citations,
                mode_used=RetrievalMode.HYBRID,
                routing_reason=decision.routing_reason,
                entity_hits=len(entity_hits),
                hybrid_top_score=top_score,
            )

        self._log.info(
            "knowledge_query_complete",
            query=query[:100],
            workspace_id=workspace_id,
            mode_used=result.mode_used.value,
            routing_reason=result.routing_reason,
            sources=len(result.sources),
            citations=len(result.citations),
        )
        return result

    async def stream(
        self,
        query: str,
        workspace_id: str,
        mode: str | RetrievalMode | None = RetrievalMode.AUTO,
        top_k: int | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Yield a knowledge query as stream events. Never raises for engine
        errors; they become an ``error`` event followed by ``done``.
        """
        try:
            result = await self.knowledge_query(query, workspace_id, mode, top_k)
        except KnowledgeEngineError as e:
            self._log.warning(
                "knowledge_stream_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            yield {"type": "error", "message": str(e)}
            yield {"type": "done"}
            return
        except Exception as e:
            # The HTTP response is already streaming; report in-band
            self._log.exception("knowledge_stream_unexpected_error")
            yield {"type": "error", "message": f"Knowledge query failed: {type(e).__name__}"}
            yield {"type": "done"}
            return

        yield {"type": "meta", **result.meta()}
        for char in result.answer:
            yield {"type": "token", "token": char}
        yield {"type": "done"}

    async def graph_query(
        self,
        query: str,
        workspace_id: str,
        top_k: int | None = None,
    ) -> GraphRetrievalResult:
        """Direct graph retrieval without routing."""
        query, workspace_id, _, top_k = self.validate_request(query, workspace_id, None, top_k)
        return await self.graph_retriever.retrieve(query, workspace_id, top_k)

    async def neighbors(self, entity_id: str, depth: int = 2) -> Neighborhood:
        """Neighborhood of one entity, depth clamped to the configured maximum."""
        if not entity_id:
            raise InvalidQueryError("entity_id is required")
        return await self.graph_store.get_neighborhood(
            entity_id, clamp_depth(depth, self.max_traversal_depth)
        )

    async def extract(
        self,
        text: str,
        workspace_id: str,
        document_id: str | None = None,
    ) -> ExtractionResult:
        """Extract entities and relationships from text into the graph store."""
        if not text or not text.strip():
            raise InvalidQueryError("text is required")
        if not workspace_id:
            raise InvalidQueryError("workspace_id is required")
        return await self.extractor.extract(text, workspace_id, document_id)


# =============================================================================
# Wiring
# =============================================================================


def create_knowledge_service(
    settings: Settings,
    index_store: IndexStore,
    graph_store: GraphStore,
    embeddings: EmbeddingProvider,
    model: GenerativeModelProvider | None,
) -> KnowledgeService:
    """Assemble the engines around already-constructed providers."""
    synthesizer = AnswerSynthesizer(model=model, max_chunks=settings.synthesis_max_chunks)
    hybrid_engine = HybridSearchEngine(
        index_store,
        embeddings,
        default_vector_weight=settings.hybrid_vector_weight,
    )
    graph_retriever = GraphRetriever(
        index_store,
        graph_store,
        embeddings,
        synthesizer,
        rrf_k=settings.rrf_k,
        traversal_depth=settings.graph_traversal_depth,
        chunk_score=settings.graph_chunk_score,
        entity_limit=settings.entity_match_limit,
        sub_query_timeout=settings.sub_query_timeout_seconds,
    )
    router = ModeRouter(
        hybrid_engine,
        graph_store,
        threshold=settings.graph_route_threshold,
        entity_limit=settings.router_entity_limit,
    )
    return KnowledgeService(
        hybrid_engine=hybrid_engine,
        graph_retriever=graph_retriever,
        router=router,
        synthesizer=synthesizer,
        graph_store=graph_store,
        extractor=KnowledgeExtractor(model=model, graph_store=graph_store),
        default_top_k=settings.default_top_k,
        max_top_k=settings.max_top_k,
        max_traversal_depth=settings.max_traversal_depth,
        index_store=index_store,
    )


def build_knowledge_service(settings: Settings) -> KnowledgeService:
    """
    Construct the production providers (PostgreSQL, Bedrock, graph store)
    once and wire them into a KnowledgeService.
    """
    # Imported here so tests that inject fakes never create engines or clients
    from knowledge_engine.db import get_engine
    from knowledge_engine.storage.index_store import PostgresIndexStore
    from knowledge_engine.utils.embeddings import BedrockEmbeddings
    from knowledge_engine.utils.generation import BedrockGenerativeModel

    engine = get_engine(settings)
    index_store = PostgresIndexStore(engine, text_search_config=settings.text_search_config)
    graph_store = build_graph_store(settings, engine)
    embeddings = BedrockEmbeddings(settings)
    model = BedrockGenerativeModel(settings) if settings.model_configured() else None

    logger.info(
        "knowledge_service_built",
        kg_store_type=settings.kg_store_type,
        model_configured=model is not None,
    )
    return create_knowledge_service(settings, index_store, graph_store, embeddings, model)


__all__ = [
    "KnowledgeService",
    "create_knowledge_service",
    "build_knowledge_service",
]
