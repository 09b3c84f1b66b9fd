"""
Retrieval package: hybrid search, graph retrieval, routing and synthesis.

Only the data model and errors are re-exported here; engines are imported
from their modules so that the stores can depend on the data model without
import cycles.

Usage:
    from knowledge_engine.retrieval.knowledge import build_knowledge_service
    from knowledge_engine.retrieval import RetrievalResult, InvalidQueryError
"""

from knowledge_engine.retrieval.errors import (
    InvalidQueryError,
    KnowledgeEngineError,
    RetrievalUnavailableError,
)
from knowledge_engine.retrieval.models import (
    GraphRetrievalResult,
    HybridSearchResult,
    IndexHit,
    KnowledgeEntity,
    KnowledgeRelationship,
    Neighborhood,
    RankedCandidate,
    RetrievalMode,
    RetrievalResult,
    RoutingDecision,
    SearchFilters,
    SourceType,
)

__all__ = [
    "KnowledgeEngineError",
    "InvalidQueryError",
    "RetrievalUnavailableError",
    "GraphRetrievalResult",
    "HybridSearchResult",
    "IndexHit",
    "KnowledgeEntity",
    "KnowledgeRelationship",
    "Neighborhood",
    "RankedCandidate",
    "RetrievalMode",
    "RetrievalResult",
    "RoutingDecision",
    "SearchFilters",
    "SourceType",
]
