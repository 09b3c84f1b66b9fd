"""
Data model shared by the stores, engines and the HTTP layer.

All records are frozen dataclasses. Collections held by results are tuples
so a RetrievalResult cannot be mutated after it is produced; ``to_dict()``
converts to JSON-ready dicts for the API and the stream events.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# =============================================================================
# Enums
# =============================================================================


class SourceType(str, Enum):
    """Which retrieval path produced a candidate."""

    VECTOR = "vector"
    LEXICAL = "lexical"
    GRAPH = "graph"
    HYBRID = "hybrid"


class RetrievalMode(str, Enum):
    """Requested retrieval strategy. AUTO lets the router decide."""

    AUTO = "auto"
    HYBRID = "hybrid"
    GRAPH = "graph"


# =============================================================================
# Search Index Records
# =============================================================================


@dataclass(frozen=True)
class SearchFilters:
    """Optional predicates applied to search_index rows."""

    block_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    properties: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (
            self.block_type or self.date_from or self.date_to or self.properties
        )


@dataclass(frozen=True)
class IndexHit:
    """One search_index row scored by a single predicate (lexical or vector)."""

    id: str
    content: str
    document_id: str
    block_id: str | None
    score: float
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str | None]:
        """Identity of the indexed block, unique per search_index row."""
        return (self.document_id, self.block_id)


@dataclass(frozen=True)
class RankedCandidate:
    """A scored passage returned to callers as a source."""

    id: str
    content: str
    document_id: str | None
    score: float
    source_type: SourceType
    block_id: str | None = None
    title: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "document_id": self.document_id,
            "block_id": self.block_id,
            "title": self.title,
            "score": self.score,
            "source_type": self.source_type.value,
        }


@dataclass(frozen=True)
class HybridSearchResult:
    """A page of hybrid search results plus the total number of matches."""

    results: tuple[RankedCandidate, ...]
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [c.to_dict() for c in self.results],
            "total": self.total,
        }


# =============================================================================
# Knowledge Graph Records
# =============================================================================


@dataclass(frozen=True)
class KnowledgeEntity:
    """A named entity extracted from workspace content."""

    id: str
    workspace_id: str
    name: str
    entity_type: str
    description: str = ""
    document_id: str | None = None

    @property
    def label(self) -> str:
        """``name(type)`` as used in rendered neighborhood chunks."""
        return f"{self.name}({self.entity_type})"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class KnowledgeRelationship:
    """A directed, typed edge between two entities of one workspace."""

    id: str
    workspace_id: str
    source_entity_id: str
    target_entity_id: str
    relation_type: str
    weight: float = 1.0

    def touches(self, entity_id: str) -> bool:
        return entity_id in (self.source_entity_id, self.target_entity_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Neighborhood:
    """Entities and relationships reachable from a start entity."""

    entities: tuple[KnowledgeEntity, ...] = ()
    relationships: tuple[KnowledgeRelationship, ...] = ()

    def entity_ids(self) -> set[str]:
        return {e.id for e in self.entities}

    def relationship_ids(self) -> set[str]:
        return {r.id for r in self.relationships}

    def to_dict(self) -> dict[str, Any]:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relationships": [r.to_dict() for r in self.relationships],
        }


# =============================================================================
# Engine Results
# =============================================================================


@dataclass(frozen=True)
class SynthesisResult:
    answer: str
    citations: tuple[str, ...] = ()


@dataclass(frozen=True)
class GraphRetrievalResult:
    """Output of the graph retrieval engine. ``entities`` are the matched ones."""

    answer: str
    sources: tuple[RankedCandidate, ...]
    entities: tuple[KnowledgeEntity, ...]
    citations: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "sources": [s.to_dict() for s in self.sources],
            "entities": [e.to_dict() for e in self.entities],
            "citations": list(self.citations),
        }


@dataclass(frozen=True)
class RoutingDecision:
    """
    The router's choice plus the signals it was based on.

    ``entity_hits`` are the keyword entity matches, kept so the facade can
    report them without querying again. Both signals stay empty/0.0 for
    forced modes.
    """

    mode_used: RetrievalMode
    routing_reason: str
    entity_hits: tuple[KnowledgeEntity, ...] = ()
    hybrid_top_score: float = 0.0


@dataclass(frozen=True)
class RetrievalResult:
    """Final answer with provenance, as returned by knowledge_query."""

    answer: str
    sources: tuple[RankedCandidate, ...]
    entities: tuple[KnowledgeEntity, ...]
    citations: tuple[str, ...]
    mode_used: RetrievalMode
    routing_reason: str
    entity_hits: int = 0
    hybrid_top_score: float = 0.0

    @property
    def debug(self) -> dict[str, Any]:
        return {
            "entity_hits": self.entity_hits,
            "hybrid_top_score": self.hybrid_top_score,
        }

    def meta(self) -> dict[str, Any]:
        """Everything except the answer text; the stream's ``meta`` event body."""
        return {
            "mode_used": self.mode_used.value,
            "routing_reason": self.routing_reason,
            "sources": [s.to_dict() for s in self.sources],
            "entities": [e.to_dict() for e in self.entities],
            "citations": list(self.citations),
            "debug": self.debug,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"answer": self.answer, **self.meta()}


__all__ = [
    "SourceType",
    "RetrievalMode",
    "SearchFilters",
    "IndexHit",
    "RankedCandidate",
    "HybridSearchResult",
    "KnowledgeEntity",
    "KnowledgeRelationship",
    "Neighborhood",
    "SynthesisResult",
    "GraphRetrievalResult",
    "RoutingDecision",
    "RetrievalResult",
]
