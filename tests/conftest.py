"""In-memory fakes for the engine's collaborators, shared by the test modules."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pytest

from knowledge_engine.config import Settings
from knowledge_engine.config import settings as settings_module
from knowledge_engine.knowledge_graph.store import GraphStoreUnavailableError
from knowledge_engine.knowledge_graph.traversal import expand_neighborhood
from knowledge_engine.retrieval.knowledge import KnowledgeService, create_knowledge_service
from knowledge_engine.retrieval.models import (
    IndexHit,
    KnowledgeEntity,
    KnowledgeRelationship,
    Neighborhood,
    SearchFilters,
)
from knowledge_engine.storage.index_store import IndexStoreUnavailableError
from knowledge_engine.utils.generation import GenerationModelError


# =============================================================================
# Search index
# =============================================================================


@dataclass
class IndexRow:
    """A search_index row with the score each predicate would assign it."""

    id: str
    content: str
    document_id: str
    block_id: str | None = None
    lexical: float = 0.0
    vector: float | None = None
    created_at: datetime | None = None
    title: str | None = None
    workspace_id: str = "ws-1"

    def hit(self, score: float) -> IndexHit:
        return IndexHit(
            id=self.id,
            content=self.content,
            document_id=self.document_id,
            block_id=self.block_id,
            score=score,
            title=self.title,
            created_at=self.created_at,
        )


@dataclass
class FakeIndexStore:
    rows: list[IndexRow] = field(default_factory=list)
    fail: bool = False
    fail_count: bool = False
    delay: float = 0.0
    calls: list[tuple[str, int]] = field(default_factory=list)

    async def _enter(self, operation: str, limit: int) -> None:
        self.calls.append((operation, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise IndexStoreUnavailableError(f"index down during {operation}")

    def _scoped(self, workspace_id: str) -> list[IndexRow]:
        return [r for r in self.rows if r.workspace_id == workspace_id]

    @staticmethod
    def _ranked(pairs: Iterable[tuple[IndexRow, float]], limit: int) -> list[IndexHit]:
        ordered = sorted(
            pairs,
            key=lambda p: (p[1], p[0].created_at or datetime.min),
            reverse=True,
        )
        return [row.hit(score) for row, score in ordered[:limit]]

    async def query_lexical(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        await self._enter("lexical", limit)
        pairs = [(r, r.lexical) for r in self._scoped(workspace_id) if r.lexical > 0]
        return self._ranked(pairs, limit)

    async def query_vector(
        self,
        workspace_id: str,
        embedding: list[float],
        filters: SearchFilters | None,
        limit: int,
    ) -> list[IndexHit]:
        await self._enter("vector", limit)
        pairs = [
            (r, r.vector) for r in self._scoped(workspace_id) if r.vector is not None
        ]
        return self._ranked(pairs, limit)

    async def count_matches(
        self,
        workspace_id: str,
        query: str,
        filters: SearchFilters | None,
        include_vector: bool,
    ) -> int:
        await self._enter("count", 0)
        if self.fail_count:
            raise IndexStoreUnavailableError("count failed")
        return len(
            {
                r.document_id
                for r in self._scoped(workspace_id)
                if r.lexical > 0 or (include_vector and r.vector is not None)
            }
        )

    async def suggest(self, workspace_id: str, query: str, limit: int) -> list[str]:
        await self._enter("suggest", limit)
        prefixes: list[str] = []
        for row in self._scoped(workspace_id):
            prefix = row.content[:100]
            if query.lower() in row.content.lower() and prefix not in prefixes:
                prefixes.append(prefix)
        return prefixes[:limit]

    async def ping(self) -> bool:
        return not self.fail


# =============================================================================
# Knowledge graph
# =============================================================================


class FakeGraphStore:
    """Dict-backed GraphStore; neighborhoods use the shared BFS expansion."""

    def __init__(self, max_depth: int = 3) -> None:
        self.entities: dict[str, KnowledgeEntity] = {}
        self.relationships: list[KnowledgeRelationship] = []
        self.max_depth = max_depth
        self.fail = False
        self.delay = 0.0
        self.keyword_calls: list[tuple[str, str, int]] = []
        self._ids = itertools.count(1)

    async def _enter(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise GraphStoreUnavailableError("graph down")

    def add_entity(
        self,
        name: str,
        entity_type: str,
        workspace_id: str = "ws-1",
        entity_id: str | None = None,
        document_id: str | None = None,
    ) -> KnowledgeEntity:
        entity = KnowledgeEntity(
            id=entity_id or f"e{next(self._ids)}",
            workspace_id=workspace_id,
            name=name,
            entity_type=entity_type,
            document_id=document_id,
        )
        self.entities[entity.id] = entity
        return entity

    def link(
        self,
        source: KnowledgeEntity,
        target: KnowledgeEntity,
        relation_type: str,
        weight: float = 1.0,
    ) -> KnowledgeRelationship:
        rel = KnowledgeRelationship(
            id=f"r{next(self._ids)}",
            workspace_id=source.workspace_id,
            source_entity_id=source.id,
            target_entity_id=target.id,
            relation_type=relation_type,
            weight=weight,
        )
        self.relationships.append(rel)
        return rel

    async def find_entities_by_keyword(
        self, workspace_id: str, keyword: str, limit: int
    ) -> list[KnowledgeEntity]:
        self.keyword_calls.append((workspace_id, keyword, limit))
        await self._enter()
        matches = [
            e
            for e in self.entities.values()
            if e.workspace_id == workspace_id and keyword.lower() in e.name.lower()
        ]
        return matches[:limit]

    async def _edges_touching(self, ids: set[str]) -> list[KnowledgeRelationship]:
        return [r for r in self.relationships if r.source_entity_id in ids or r.target_entity_id in ids]

    async def _entities_by_id(self, ids: set[str]) -> list[KnowledgeEntity]:
        return [self.entities[i] for i in ids if i in self.entities]

    async def get_neighborhood(self, entity_id: str, depth: int) -> Neighborhood:
        await self._enter()
        return await expand_neighborhood(
            entity_id,
            depth,
            self._edges_touching,
            self._entities_by_id,
            max_depth=self.max_depth,
        )

    async def upsert_entity(
        self,
        workspace_id: str,
        name: str,
        entity_type: str,
        description: str = "",
        document_id: str | None = None,
    ) -> KnowledgeEntity:
        await self._enter()
        for entity in self.entities.values():
            if (entity.workspace_id, entity.name, entity.entity_type) == (
                workspace_id,
                name,
                entity_type,
            ):
                return entity
        entity = KnowledgeEntity(
            id=f"e{next(self._ids)}",
            workspace_id=workspace_id,
            name=name,
            entity_type=entity_type,
            description=description,
            document_id=document_id,
        )
        self.entities[entity.id] = entity
        return entity

    async def add_relationship(
        self,
        workspace_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relation_type: str,
        weight: float = 1.0,
    ) -> KnowledgeRelationship | None:
        await self._enter()
        key = (workspace_id, source_entity_id, target_entity_id, relation_type)
        for rel in self.relationships:
            if (
                rel.workspace_id,
                rel.source_entity_id,
                rel.target_entity_id,
                rel.relation_type,
            ) == key:
                return None
        rel = KnowledgeRelationship(
            id=f"r{next(self._ids)}",
            workspace_id=workspace_id,
            source_entity_id=source_entity_id,
            target_entity_id=target_entity_id,
            relation_type=relation_type,
            weight=weight,
        )
        self.relationships.append(rel)
        return rel

    async def close(self) -> None:
        return None


# =============================================================================
# Providers
# =============================================================================


class FakeEmbeddings:
    def __init__(self, vector: list[float] | None = None, delay: float = 0.0) -> None:
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.delay = delay
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.vector)


class FakeModel:
    """Returns canned text (or the result of a callable); records prompts."""

    def __init__(
        self,
        reply: str | Callable[[str], str] = "答案 [1]",
        fail: bool = False,
    ) -> None:
        self.reply = reply
        self.fail = fail
        self.prompts: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationModelError("model down")
        if callable(self.reply):
            return self.reply(prompt)
        return self.reply


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Any:
    settings_module.get_settings.cache_clear()
    yield
    settings_module.get_settings.cache_clear()


@pytest.fixture
def index_store() -> FakeIndexStore:
    return FakeIndexStore()


@pytest.fixture
def graph_store() -> FakeGraphStore:
    return FakeGraphStore()


@pytest.fixture
def embeddings() -> FakeEmbeddings:
    return FakeEmbeddings()


@pytest.fixture
def model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="local", debug=True)


@pytest.fixture
def make_service(
    settings: Settings,
    index_store: FakeIndexStore,
    graph_store: FakeGraphStore,
    embeddings: FakeEmbeddings,
) -> Callable[..., KnowledgeService]:
    """Factory building a KnowledgeService over the fakes; model defaults to None."""

    def _factory(model: Any = None, **overrides: Any) -> KnowledgeService:
        return create_knowledge_service(
            settings.model_copy(update=overrides) if overrides else settings,
            index_store,
            graph_store,
            embeddings,
            model,
        )

    return _factory
