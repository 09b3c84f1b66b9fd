"""
Versioned API routes (v1).

Endpoints:
    - /knowledge/query, /knowledge/stream, /graphrag/query (knowledge.router)
    - /kg/entities/{entity_id}/neighbors, /kg/extract (kg.router)
    - /search, /search/suggestions (search.router)

Note:
    The /api/v1 prefix is NOT included in this router; it is applied when
    including the router in main.py.
"""

from __future__ import annotations

from fastapi import APIRouter

from knowledge_engine.api.routes.v1 import kg, knowledge, search

# No prefix here - prefix="/api/v1" is applied in main.py
router = APIRouter()

router.include_router(knowledge.router)
router.include_router(kg.router)
router.include_router(search.router)

__all__ = ["router"]
