"""
Provider interfaces consumed by the retrieval engines.

Engines receive these collaborators through their constructors; nothing in
``knowledge_engine.retrieval`` creates a client or reaches for a module-level
instance. Concrete implementations:

    EmbeddingProvider        -> utils.embeddings.BedrockEmbeddings
    GenerativeModelProvider  -> utils.generation.BedrockGenerativeModel
    IndexStore               -> storage.index_store.PostgresIndexStore
    GraphStore               -> knowledge_graph.store.PostgresGraphStore,
                                knowledge_graph.store.Neo4jGraphStore

Tests substitute in-memory fakes (see tests/conftest.py).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from knowledge_engine.retrieval.models import (
    IndexHit,
    KnowledgeEntity,
    KnowledgeRelationship,
    Neighborhood,
    SearchFilters,
)


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]:
        """Return the text's embedding, or [] when unavailable. Never raises."""
        ...


@runtime_checkable
class GenerativeModelProvider(Protocol):
    async def generate(self, prompt: str) -> str:
        """Return the completion. Raises GenerationError on failure."""
        ...


@runtime_checkable
class IndexStore(Protocol):
    """Read access to the search_index table, scoped by workspace."""

    async def query_lexical(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        """Rows matching the full-text query, best lexical score first."""
        ...

    async def query_vector(
        self,
        workspace_id: str,
        embedding: list[float],
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        """Rows with an embedding, highest cosine similarity first."""
        ...

    async def count_matches(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        include_vector: bool,
    ) -> int:
        """Number of distinct documents matching the query."""
        ...

    async def suggest(
        self,
        workspace_id: str,
        query: str,
        limit: int,
    ) -> list[str]:
        """Distinct content prefixes containing the query, newest first."""
        ...


@runtime_checkable
class GraphStore(Protocol):
    """Read and write access to a workspace's knowledge graph."""

    async def find_entities_by_keyword(
        self,
        workspace_id: str,
        keyword: str,
        limit: int,
    ) -> list[KnowledgeEntity]:
        """Entities whose name or description contains keyword (case-insensitive)."""
        ...

    async def get_neighborhood(self, entity_id: str, depth: int) -> Neighborhood:
        """Undirected closure around entity_id; depth is clamped by the store."""
        ...

    async def upsert_entity(
        self,
        workspace_id: str,
        name: str,
        entity_type: str,
        description: str = "",
        document_id: str | None = None,
    ) -> KnowledgeEntity:
        """Insert or return the existing (workspace_id, name, entity_type) entity."""
        ...

    async def add_relationship(
        self,
        workspace_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relation_type: str,
        weight: float = 1.0,
    ) -> KnowledgeRelationship | None:
        """Insert an edge; None when an identical edge already exists."""
        ...


__all__ = [
    "EmbeddingProvider",
    "GenerativeModelProvider",
    "IndexStore",
    "GraphStore",
]
