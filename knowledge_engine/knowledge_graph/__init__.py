"""
Knowledge graph package: stores, traversal, and LLM extraction.

Usage:
    from knowledge_engine.knowledge_graph import build_graph_store, KnowledgeExtractor
"""

from knowledge_engine.knowledge_graph.extractor import ExtractionResult, KnowledgeExtractor
from knowledge_engine.knowledge_graph.store import (
    GraphStoreError,
    GraphStoreUnavailableError,
    Neo4jGraphStore,
    PostgresGraphStore,
    build_graph_store,
)
from knowledge_engine.knowledge_graph.traversal import clamp_depth, expand_neighborhood

__all__ = [
    "PostgresGraphStore",
    "Neo4jGraphStore",
    "GraphStoreError",
    "GraphStoreUnavailableError",
    "build_graph_store",
    "KnowledgeExtractor",
    "ExtractionResult",
    "clamp_depth",
    "expand_neighborhood",
]
