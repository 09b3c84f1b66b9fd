"""
V1 search endpoints: hybrid (or lexical-only) search and type-ahead.

    POST /api/v1/search              ranked page + total matching documents
    GET  /api/v1/search/suggestions  distinct content prefixes containing q
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from knowledge_engine.api.dependencies import get_knowledge_service
from knowledge_engine.api.middleware.logging import bind_request_context
from knowledge_engine.retrieval.knowledge import KnowledgeService
from knowledge_engine.retrieval.models import SearchFilters

router = APIRouter(prefix="/search", tags=["v1", "Search"])


class SearchFiltersModel(BaseModel):
    block_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    properties: dict[str, str] = Field(default_factory=dict)

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            block_type=self.block_type,
            date_from=self.date_from,
            date_to=self.date_to,
            properties=dict(self.properties),
        )


class SearchRequest(BaseModel):
    """Hybrid search payload."""

    query: str = Field(default="", max_length=4000)
    workspace_id: str = Field(default="")
    limit: int = Field(default=20, description="Page size")
    offset: int = Field(default=0, description="Ranked candidates to skip")
    vector_weight: float | None = Field(
        default=None,
        description="Weight of the vector score in [0, 1]; server default when omitted",
    )
    hybrid: bool = Field(default=True, description="False runs lexical-only search")
    filters: SearchFiltersModel | None = None


@router.post("", summary="Hybrid search")
async def search(
    body: SearchRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    bind_request_context(workspace_id=body.workspace_id or None)
    result = await service.hybrid_engine.search(
        body.query,
        body.workspace_id,
        limit=body.limit,
        offset=body.offset,
        filters=body.filters.to_filters() if body.filters else None,
        vector_weight=body.vector_weight,
        hybrid=body.hybrid,
    )
    return result.to_dict()


@router.get("/suggestions", summary="Search suggestions")
async def suggestions(
    q: str = Query(default=""),
    workspace_id: str = Query(default=""),
    limit: int = Query(default=5, ge=1, le=20),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    return {"suggestions": await service.hybrid_engine.suggest(q, workspace_id, limit)}


__all__ = ["router"]
