"""
API package for the knowledge engine HTTP surface.

Package Structure:
    - main.py: FastAPI application factory and lifespan
    - routes/: endpoint definitions
        - health.py: health check with dependency status
        - v1/: versioned endpoints (/api/v1)
            - knowledge.py: routed knowledge queries, streaming, GraphRAG
            - kg.py: knowledge graph neighborhood and extraction
            - search.py: hybrid search and suggestions
    - middleware/: structured logging setup

Usage:
    from knowledge_engine.api.main import app, create_app

    # uvicorn knowledge_engine.api.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

# Version information for the API
__version__ = "0.1.0"
__api_version__ = "v1"

__all__ = [
    "__version__",
    "__api_version__",
]
