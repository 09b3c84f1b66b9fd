"""
Reciprocal Rank Fusion (RRF) for merging multiple ranked result lists.

Graph retrieval fuses three independently ranked lists (vector similarity,
lexical match, knowledge-graph neighborhood chunks) whose scores live on
different scales. RRF ignores the raw scores and only uses ranks:

Algorithm:
    For each item d:
        score(d) = Σ 1/(k + rank(d, list_i)) for all lists containing d

    rank is 1-based here, which equals 1/(k + r + 1) for a zero-based r.
    k defaults to 60. Items are returned by descending fused score; ties keep
    the order in which items were first seen across the lists.

Usage:
    from knowledge_engine.utils.rrf import rrf_fusion

    fused = rrf_fusion(
        [vector_hits, lexical_hits, graph_chunks],
        source_labels=["vector", "lexical", "graph"],
    )
    fused[0]["id"], fused[0]["rrf_score"], fused[0]["sources"]

Reference:
    - Cormack, Clarke & Buettcher, "Reciprocal Rank Fusion outperforms
      Condorcet and individual Rank Learning Methods" (SIGIR 2009)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, TypedDict

import structlog

logger = structlog.get_logger(__name__)


# =============================================================================
# Type Definitions
# =============================================================================


class RRFResult(TypedDict):
    """Result from RRF fusion."""

    id: str
    rrf_score: float
    sources: list[str]
    item: Any


# =============================================================================
# Constants
# =============================================================================

DEFAULT_K = 60

SOURCE_LABELS = ["vector", "lexical", "graph"]


# =============================================================================
# RRF Implementation
# =============================================================================


def _item_id(item: Any) -> str | None:
    if isinstance(item, Mapping):
        value = item.get("id")
    else:
        value = getattr(item, "id", None)
    if value is None or value == "":
        return None
    return str(value)


def rrf_fusion(
    result_lists: Sequence[Sequence[Any]],
    k: int = DEFAULT_K,
    source_labels: Sequence[str] | None = None,
) -> list[RRFResult]:
    """
    Merge ranked result lists using Reciprocal Rank Fusion.

    Args:
        result_lists: Ranked lists, best first. Items are mappings with an
            "id" key or objects with an ``id`` attribute.
        k: RRF constant (default 60).
        source_labels: One label per input list (positionally, empty lists
            included). Defaults to vector/lexical/graph, then source_<n>.

    Returns:
        Fused results sorted by rrf_score descending. ``item`` is the first
        occurrence of the id; ``sources`` lists each contributing label.

    Example:
        >>> vector = [{"id": "c1"}, {"id": "c2"}]
        >>> lexical = [{"id": "c2"}, {"id": "c3"}]
        >>> rrf_fusion([vector, lexical])[0]["id"]
        'c2'

    Note:
        Items without an id are skipped with a warning.
    """
    if k <= 0:
        raise ValueError(f"RRF k must be positive, got {k}")

    labels = list(source_labels or SOURCE_LABELS)
    if len(labels) < len(result_lists):
        labels += [f"source_{i}" for i in range(len(labels), len(result_lists))]

    doc_scores: dict[str, float] = {}
    doc_sources: dict[str, list[str]] = {}
    doc_items: dict[str, Any] = {}

    for list_idx, result_list in enumerate(result_lists):
        source_label = labels[list_idx]

        for rank, result in enumerate(result_list, start=1):
            doc_id = _item_id(result)
            if doc_id is None:
                logger.warning(
                    "rrf_missing_id",
                    list_index=list_idx,
                    rank=rank,
                )
                continue

            if doc_id not in doc_scores:
                doc_scores[doc_id] = 0.0
                doc_sources[doc_id] = []
                doc_items[doc_id] = result

            doc_scores[doc_id] += 1.0 / (k + rank)
            doc_sources[doc_id].append(source_label)

    fused_results = [
        RRFResult(
            id=doc_id,
            rrf_score=score,
            sources=doc_sources[doc_id],
            item=doc_items[doc_id],
        )
        for doc_id, score in doc_scores.items()
    ]

    # list.sort is stable, so equal scores keep discovery order
    fused_results.sort(key=lambda x: x["rrf_score"], reverse=True)

    logger.debug(
        "rrf_fusion_complete",
        input_lists=len(result_lists),
        unique_docs=len(fused_results),
        multi_source_docs=sum(1 for r in fused_results if len(r["sources"]) > 1),
        top_score=fused_results[0]["rrf_score"] if fused_results else 0.0,
    )

    return fused_results


__all__ = [
    "RRFResult",
    "rrf_fusion",
    "DEFAULT_K",
]
