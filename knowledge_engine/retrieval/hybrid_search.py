"""
Weighted lexical + vector search over the workspace search index.

Architecture:
    query ──┬─> IndexStore.query_lexical ──────────────────┐
            └─> embed ─> IndexStore.query_vector ──────────┤  (concurrent)
                                                           ↓
                         full outer merge on (document_id, block_id)
                         score = lexical·(1 - w) + vector·w
                                                           ↓
                         drop score ≤ 0, sort (score, created_at) desc
                                                           ↓
                                    offset / limit page + total

Both predicates fetch ``offset + limit`` rows, enough to fill the requested
page from either side. A block missing from one side scores 0 on that side.

Graceful Degradation:
    - Embedding provider: Optional - an empty (or all-zero) query vector skips
      the vector predicate, so ranking is purely lexical
    - Total count: Optional - falls back to the number of merged candidates
    - Index store: REQUIRED - raises RetrievalUnavailableError

Usage:
    engine = HybridSearchEngine(index_store, embeddings)
    page = await engine.search("launch timeline", "ws-1", limit=20, vector_weight=0.3)
    for candidate in page.results:
        print(candidate.score, candidate.content[:80])
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from knowledge_engine.retrieval.errors import InvalidQueryError, RetrievalUnavailableError
from knowledge_engine.retrieval.interfaces import EmbeddingProvider, IndexStore
from knowledge_engine.retrieval.models import (
    HybridSearchResult,
    IndexHit,
    RankedCandidate,
    SearchFilters,
    SourceType,
)
from knowledge_engine.storage.index_store import IndexStoreError

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_LIMIT = 20
DEFAULT_VECTOR_WEIGHT = 0.5
DEFAULT_SUGGESTION_LIMIT = 5

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class _Merged:
    hit: IndexHit
    lexical: float = 0.0
    vector: float = 0.0


def _timestamp(value: datetime | None) -> float:
    if value is None:
        return _EPOCH.timestamp()
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def is_usable_embedding(embedding: list[float] | None) -> bool:
    """An empty or all-zero vector carries no similarity signal."""
    return bool(embedding) and any(v != 0.0 for v in embedding)


# =============================================================================
# HybridSearchEngine Class
# =============================================================================


class HybridSearchEngine:
    """
    Lexical+vector query engine over an IndexStore.

    Read-only: never writes to the index.
    """

    def __init__(
        self,
        index_store: IndexStore,
        embeddings: EmbeddingProvider,
        default_vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    ) -> None:
        self._store = index_store
        self._embeddings = embeddings
        self.default_vector_weight = default_vector_weight
        self._log = logger.bind(component="hybrid_search")

    @staticmethod
    def _validate(
        query: str,
        workspace_id: str,
        limit: int,
        offset: int,
        vector_weight: float,
    ) -> None:
        if not query or not query.strip():
            raise InvalidQueryError("query is required")
        if not workspace_id:
            raise InvalidQueryError("workspace_id is required")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidQueryError(f"limit must be a positive integer, got {limit!r}")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidQueryError(f"offset must be a non-negative integer, got {offset!r}")
        if not 0.0 <= vector_weight <= 1.0:
            raise InvalidQueryError(
                f"vector_weight must be between 0 and 1, got {vector_weight}"
            )

    async def _lexical(
        self,
        query: str,
        workspace_id: str,
        filters: SearchFilters | None,
        cap: int,
    ) -> list[IndexHit]:
        return await self._store.query_lexical(workspace_id, query, filters, cap)

    async def _vector(
        self,
        query: str,
        workspace_id: str,
        filters: SearchFilters | None,
        cap: int,
    ) -> tuple[list[IndexHit], bool]:
        try:
            embedding = await self._embeddings.embed(query)
        except Exception as e:
            # A provider outage degrades to lexical ranking, never a failed search
            self._log.warning(
                "embedding_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            embedding = []
        if not is_usable_embedding(embedding):
            self._log.info("vector_search_skipped", reason="embedding_unavailable")
            return [], False
        hits = await self._store.query_vector(workspace_id, embedding, filters, cap)
        return hits, True

    @staticmethod
    def merge(
        lexical_hits: list[IndexHit],
        vector_hits: list[IndexHit],
        vector_weight: float,
    ) -> list[tuple[IndexHit, float]]:
        """
        Full outer merge of both predicates' hits.

        Returns (hit, combined_score) pairs with a positive score, best first;
        equal scores put the most recently created block first.
        """
        merged: dict[tuple[str, str | None], _Merged] = {}
        for hit in lexical_hits:
            merged.setdefault(hit.key, _Merged(hit=hit)).lexical = hit.score
        for hit in vector_hits:
            merged.setdefault(hit.key, _Merged(hit=hit)).vector = hit.score

        lexical_weight = 1.0 - vector_weight
        scored = [
            (m.hit, m.lexical * lexical_weight + m.vector * vector_weight)
            for m in merged.values()
        ]
        scored = [(hit, score) for hit, score in scored if score > 0]
        scored.sort(key=lambda pair: (pair[1], _timestamp(pair[0].created_at)), reverse=True)
        return scored

    async def search(
        self,
        query: str,
        workspace_id: str,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        filters: SearchFilters | None = None,
        vector_weight: float | None = None,
        hybrid: bool = True,
        include_total: bool = True,
    ) -> HybridSearchResult:
        """
        Run a hybrid (or, with hybrid=False, lexical-only) search.

        Args:
            query: Free-text query.
            workspace_id: Workspace scope.
            limit: Page size.
            offset: Number of ranked candidates to skip.
            filters: Optional block type / date / document property filters.
            vector_weight: Weight of the vector score in [0, 1]. Defaults to
                the engine's configured weight.
            hybrid: False runs the lexical predicate only.
            include_total: Also count distinct matching documents.

        Raises:
            InvalidQueryError: Before any store call, for bad arguments.
            RetrievalUnavailableError: If the index store fails.
        """
        weight = self.default_vector_weight if vector_weight is None else vector_weight
        self._validate(query, workspace_id, limit, offset, weight)

        cap = offset + limit

        try:
            if hybrid:
                # Wait for both sides before surfacing a failure from either
                lexical_result, vector_result = await asyncio.gather(
                    self._lexical(query, workspace_id, filters, cap),
                    self._vector(query, workspace_id, filters, cap),
                    return_exceptions=True,
                )
                for outcome in (lexical_result, vector_result):
                    if isinstance(outcome, BaseException):
                        raise outcome
                lexical_hits = lexical_result
                vector_hits, used_vector = vector_result
            else:
                lexical_hits = await self._lexical(query, workspace_id, filters, cap)
                vector_hits, used_vector = [], False
                weight = 0.0
        except IndexStoreError as e:
            self._log.error(
                "hybrid_search_failed",
                workspace_id=workspace_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalUnavailableError(f"Search index unavailable: {e}") from e

        ranked = self.merge(lexical_hits, vector_hits, weight)
        source_type = SourceType.HYBRID if hybrid else SourceType.LEXICAL
        page = tuple(
            RankedCandidate(
                id=hit.id,
                content=hit.content,
                document_id=hit.document_id,
                block_id=hit.block_id,
                title=hit.title,
                score=score,
                source_type=source_type,
            )
            for hit, score in ranked[offset:cap]
        )

        total = len(ranked)
        if include_total:
            try:
                total = await self._store.count_matches(
                    workspace_id, query, filters, include_vector=used_vector
                )
            except IndexStoreError as e:
                self._log.warning("hybrid_count_failed", error=str(e))

        self._log.info(
            "hybrid_search_complete",
            query=query[:100],
            workspace_id=workspace_id,
            lexical_hits=len(lexical_hits),
            vector_hits=len(vector_hits),
            results=len(page),
            total=total,
            vector_used=used_vector,
        )
        return HybridSearchResult(results=page, total=total)

    async def suggest(
        self,
        query: str,
        workspace_id: str,
        limit: int = DEFAULT_SUGGESTION_LIMIT,
    ) -> list[str]:
        """Content prefixes for type-ahead. Failures return []."""
        if not query.strip() or not workspace_id or limit < 1:
            return []
        try:
            return await self._store.suggest(workspace_id, query, limit)
        except IndexStoreError as e:
            self._log.warning("suggestions_failed", error=str(e))
            return []


__all__ = [
    "HybridSearchEngine",
    "DEFAULT_VECTOR_WEIGHT",
    "is_usable_embedding",
]
