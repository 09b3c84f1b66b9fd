"""
FastAPI dependencies shared by the v1 routes.

The KnowledgeService is built once in the application lifespan and kept on
``app.state`` next to the Settings the app was created with; routes receive
both through these dependencies.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.retrieval.knowledge import KnowledgeService


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with (``create_app(settings=...)``)."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def get_knowledge_service(request: Request) -> KnowledgeService:
    """Return the application's KnowledgeService or 503 if startup did not build one."""
    service = getattr(request.app.state, "knowledge_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge service is not initialized",
        )
    return service


def require_knowledge_router(request: Request) -> None:
    """404 for the knowledge query endpoints when KNOWLEDGE_ROUTER_ENABLED is off."""
    if not get_app_settings(request).knowledge_router_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Knowledge router is disabled",
        )


__all__ = [
    "get_app_settings",
    "get_knowledge_service",
    "require_knowledge_router",
]
