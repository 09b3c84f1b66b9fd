"""
V1 knowledge query endpoints: routed query, SSE streaming, direct GraphRAG.

All three are gated by the KNOWLEDGE_ROUTER_ENABLED feature flag and return
404 when it is off.

Streaming:
    POST /api/v1/knowledge/stream answers with text/event-stream. Each event
    is one ``data: <json>\\n\\n`` frame:

        {"type": "meta", "mode_used": ..., "routing_reason": ..., "sources": [...],
         "entities": [...], "citations": [...], "debug": {...}}
        {"type": "token", "token": "<one character>"}   (repeated)
        {"type": "done"}

    Invalid input is rejected with 400 before the stream starts. Failures
    after that are reported in-band as {"type": "error", "message": ...}
    followed by {"type": "done"}.

Note:
    The /api/v1 prefix is applied in main.py when including the v1 router.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from knowledge_engine.api.dependencies import get_knowledge_service, require_knowledge_router
from knowledge_engine.api.middleware.logging import bind_request_context
from knowledge_engine.retrieval.knowledge import KnowledgeService

logger = structlog.get_logger(__name__)

router = APIRouter(
    tags=["v1", "Knowledge"],
    dependencies=[Depends(require_knowledge_router)],
)


class KnowledgeQueryRequest(BaseModel):
    """Knowledge query payload. Blank fields are rejected with 400."""

    query: str = Field(default="", max_length=4000)
    workspace_id: str = Field(default="")
    mode: str = Field(default="auto", description="auto, hybrid or graph")
    top_k: int | None = Field(default=None, description="Number of sources (1-50)")


class GraphRAGQueryRequest(BaseModel):
    """Direct graph retrieval payload."""

    query: str = Field(default="", max_length=4000)
    workspace_id: str = Field(default="")
    top_k: int | None = None


async def _event_stream(events: AsyncIterator[dict[str, Any]]) -> AsyncIterator[str]:
    """Frame stream events as server-sent events."""
    async for event in events:
        yield f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.post(
    "/knowledge/query",
    summary="Routed knowledge query",
    description="Routes the query to hybrid search or graph retrieval and returns a cited answer.",
)
async def knowledge_query(
    body: KnowledgeQueryRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    bind_request_context(workspace_id=body.workspace_id or None, requested_mode=body.mode)
    result = await service.knowledge_query(
        body.query, body.workspace_id, body.mode, body.top_k
    )
    return result.to_dict()


@router.post(
    "/knowledge/stream",
    summary="Stream a routed knowledge query",
    description="Server-Sent Events stream: meta, one token event per character, done.",
)
async def knowledge_stream(
    body: KnowledgeQueryRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> StreamingResponse:
    bind_request_context(workspace_id=body.workspace_id or None, requested_mode=body.mode)
    # Reject bad input with a status code while we still can
    service.validate_request(body.query, body.workspace_id, body.mode, body.top_k)

    generator = _event_stream(
        service.stream(body.query, body.workspace_id, body.mode, body.top_k)
    )
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post(
    "/graphrag/query",
    summary="GraphRAG query",
    description="Graph retrieval (vector + lexical + knowledge graph, RRF) without routing.",
)
async def graphrag_query(
    body: GraphRAGQueryRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict[str, Any]:
    bind_request_context(workspace_id=body.workspace_id or None)
    result = await service.graph_query(body.query, body.workspace_id, body.top_k)
    logger.info(
        "graphrag_query_served",
        sources=len(result.sources),
        entities=len(result.entities),
    )
    return result.to_dict()


__all__ = ["router"]
