"""
API routes package.

    - health.py: GET /health with dependency checks
    - v1/: versioned endpoints mounted at /api/v1

Usage:
    from knowledge_engine.api.routes import health_router, v1_router

    app.include_router(health_router)
    app.include_router(v1_router, prefix="/api/v1")
"""

from __future__ import annotations

from knowledge_engine.api.routes.health import router as health_router
from knowledge_engine.api.routes.v1 import router as v1_router

__all__ = [
    "health_router",
    "v1_router",
]
