"""
V1 knowledge graph endpoints: entity neighborhoods and text extraction.

    GET  /api/v1/kg/entities/{entity_id}/neighbors?depth=2
    POST /api/v1/kg/extract   {text, workspace_id, document_id?}

Neighborhood depth is clamped to the configured maximum (3 by default);
the response echoes the depth actually used.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from knowledge_engine.api.dependencies import get_knowledge_service
from knowledge_engine.api.middleware.logging import bind_request_context
from knowledge_engine.knowledge_graph.traversal import clamp_depth
from knowledge_engine.retrieval.knowledge import KnowledgeService

router = APIRouter(prefix="/kg", tags=["v1", "Knowledge Graph"])


class ExtractRequest(BaseModel):
    """Text to extract entities and relationships from."""

    text: str = Field(default="", max_length=200_000)
    workspace_id: str = Field(default="")
    document_id: str | None = None


@router.get(
    "/entities/{entity_id}/neighbors",
    summary="Entity neighborhood",
    description="Entities and relationships reachable from an entity, undirected.",
)
async def entity_neighbors(
    entity_id: str,
    depth: int = Query(default=2, description="Traversal depth, clamped to [0, 3]"),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    neighborhood = await service.neighbors(entity_id, depth)
    return {
        "entity_id": entity_id,
        "depth": clamp_depth(depth, service.max_traversal_depth),
        **neighborhood.to_dict(),
    }


@router.post(
    "/extract",
    summary="Extract knowledge",
    description="Extracts entities and relationships from text into the workspace graph.",
)
async def extract_knowledge(
    body: ExtractRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    bind_request_context(workspace_id=body.workspace_id or None, document_id=body.document_id)
    result = await service.extract(body.text, body.workspace_id, body.document_id)
    return result.to_dict()


__all__ = ["router"]
