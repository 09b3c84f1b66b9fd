"""
Errors raised out of the retrieval engines and the knowledge query facade.

Only two conditions ever surface to callers: the request is invalid
(InvalidQueryError, checked before any store or model call) or the search
index is unreachable on the primary path (RetrievalUnavailableError).
Everything else degrades inside the engines: a graph store outage yields
zero entities, an embedding outage yields lexical-only ranking, a model
outage yields an extractive answer.

Store- and provider-level errors live beside their adapters:
    - knowledge_engine.storage.index_store: IndexStoreError, IndexStoreUnavailableError
    - knowledge_engine.knowledge_graph.store: GraphStoreError
    - knowledge_engine.utils.embeddings: EmbeddingError
    - knowledge_engine.utils.generation: GenerationError
"""

from __future__ import annotations


class KnowledgeEngineError(Exception):
    """Base exception for knowledge retrieval operations."""

    pass


class RetrievalUnavailableError(KnowledgeEngineError):
    """The search index could not be queried on the primary retrieval path."""

    pass


class InvalidQueryError(KnowledgeEngineError, ValueError):
    """Missing query or workspace id, unknown mode, or out-of-range parameter."""

    pass


__all__ = [
    "KnowledgeEngineError",
    "RetrievalUnavailableError",
    "InvalidQueryError",
]
