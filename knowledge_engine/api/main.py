"""
FastAPI application factory and configuration.

Creates the HTTP surface of the knowledge engine: CORS, request context,
error handling and the health and v1 routes. The KnowledgeService is built
once in the lifespan and shared by every request through ``app.state``.

Error Mapping:
    InvalidQueryError          -> 400 (bad query, workspace, mode, top_k)
    RetrievalUnavailableError  -> 503 (search index unreachable)
    GraphStoreError            -> 503 (graph store unreachable on direct KG calls)
    ValueError                 -> 422
    anything else              -> 500, details hidden unless DEBUG

Usage:
    # Run directly with uvicorn
    uvicorn knowledge_engine.api.main:app --reload --host 0.0.0.0 --port 8000

    # Tests inject a pre-built service
    test_app = create_app(service=service)
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from knowledge_engine.api import __api_version__, __version__
from knowledge_engine.api.middleware.logging import (
    bind_request_context,
    clear_context,
    configure_logging,
)
from knowledge_engine.api.routes import health_router, v1_router
from knowledge_engine.config import Settings, get_settings, validate_config
from knowledge_engine.knowledge_graph.store import GraphStoreError
from knowledge_engine.retrieval.errors import InvalidQueryError, RetrievalUnavailableError
from knowledge_engine.retrieval.knowledge import KnowledgeService, build_knowledge_service

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Response Models
# =============================================================================


class ErrorResponse(BaseModel):
    """Response model for error responses."""

    detail: str
    status_code: int
    error_type: str


def _error_response(status_code: int, detail: str, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            detail=detail,
            status_code=status_code,
            error_type=error_type,
        ).model_dump(),
    )


# =============================================================================
# Lifespan Context Manager
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup:
        - Configures structured logging
        - Validates configuration
        - Builds the KnowledgeService unless one was injected

    Shutdown:
        - Closes the graph store and the database engine it owns
    """
    # === Startup ===
    settings: Settings = app.state.settings
    configure_logging(environment=settings.environment, log_level=settings.log_level)
    logger.info("Starting application...")

    try:
        validation_result = validate_config()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    for warning in validation_result.get("warnings", []):
        logger.warning(f"Config warning: {warning}")

    owns_service = getattr(app.state, "knowledge_service", None) is None
    if owns_service:
        app.state.knowledge_service = build_knowledge_service(settings)

    logger.info(
        f"Application started successfully. "
        f"Version: {__version__}, API Version: {__api_version__}, "
        f"Environment: {settings.environment}"
    )

    yield  # Application runs here

    # === Shutdown ===
    logger.info("Shutting down application...")
    if owns_service:
        from knowledge_engine.db import close_engine

        service: KnowledgeService = app.state.knowledge_service
        close = getattr(service.graph_store, "close", None)
        if close is not None:
            await close()
        await close_engine()
        app.state.knowledge_service = None
    logger.info("Application shutdown complete.")


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    settings: Settings | None = None,
    service: KnowledgeService | None = None,
) -> FastAPI:
    """
    Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. Defaults to get_settings().
        service: Optional pre-built KnowledgeService. When given, the
            lifespan uses it as-is and does not close its resources.

    Returns:
        FastAPI: Configured application.
    """
    if settings is None:
        settings = get_settings()

    application = FastAPI(
        title="Knowledge Retrieval Engine API",
        description=(
            "Routes natural-language questions to hybrid lexical+vector search or "
            "knowledge-graph augmented retrieval and returns cited answers."
        ),
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    application.state.settings = settings
    application.state.knowledge_service = service

    _configure_cors(application, settings)
    _configure_request_context(application)
    _register_error_handlers(application)
    _register_routes(application)

    return application


# =============================================================================
# Middleware Configuration
# =============================================================================


def _configure_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the frontend origins configured in CORS_ORIGINS."""
    cors_origins = settings.get_cors_origins_list()

    logger.info(f"Configuring CORS for origins: {cors_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def _configure_request_context(app: FastAPI) -> None:
    """Tag every request's log events with a request id and echo it back."""

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        clear_context()
        bind_request_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_context()
        response.headers["X-Request-ID"] = request_id
        return response


# =============================================================================
# Error Handlers
# =============================================================================


def _register_error_handlers(app: FastAPI) -> None:
    """
    Register global error handlers.

    Engine errors map to 4xx/5xx with the same JSON shape as HTTP errors.
    In production, internal error details are hidden from users.
    """

    @app.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            f"HTTP exception: {exc.status_code} - {exc.detail}",
            extra={"path": str(request.url.path)},
        )
        return _error_response(exc.status_code, str(exc.detail), "http_error")

    @app.exception_handler(InvalidQueryError)
    async def invalid_query_handler(
        request: Request, exc: InvalidQueryError
    ) -> JSONResponse:
        logger.warning(
            f"Invalid query: {exc}",
            extra={"path": str(request.url.path)},
        )
        return _error_response(
            status.HTTP_400_BAD_REQUEST, str(exc), "invalid_query"
        )

    @app.exception_handler(RetrievalUnavailableError)
    async def retrieval_unavailable_handler(
        request: Request, exc: RetrievalUnavailableError
    ) -> JSONResponse:
        logger.error(
            f"Retrieval unavailable: {exc}",
            extra={"path": str(request.url.path)},
        )
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE, str(exc), "retrieval_unavailable"
        )

    @app.exception_handler(GraphStoreError)
    async def graph_store_error_handler(
        request: Request, exc: GraphStoreError
    ) -> JSONResponse:
        logger.error(
            f"Graph store error: {exc}",
            extra={"path": str(request.url.path)},
        )
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Knowledge graph unavailable",
            "graph_unavailable",
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning(
            f"Validation error: {exc}",
            extra={"path": str(request.url.path)},
        )
        return _error_response(
            status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), "validation_error"
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(
            f"Unhandled exception: {type(exc).__name__}",
            extra={"path": str(request.url.path)},
        )
        detail = str(exc) if request.app.state.settings.debug else "An unexpected error occurred."
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, detail, "internal_error"
        )


# =============================================================================
# Route Registration
# =============================================================================


def _register_routes(app: FastAPI) -> None:
    """Health at /health, versioned endpoints under /api/v1, and the root."""
    app.include_router(health_router)
    app.include_router(v1_router, prefix="/api/v1")

    @app.get(
        "/",
        tags=["Root"],
        summary="API Root",
        description="Root endpoint returning basic API information.",
    )
    async def root(request: Request) -> dict[str, Any]:
        settings: Settings = request.app.state.settings
        return {
            "name": "Knowledge Retrieval Engine API",
            "version": __version__,
            "api_version": __api_version__,
            "environment": settings.environment,
            "docs": "/docs" if settings.debug else None,
            "health": "/health",
        }


# =============================================================================
# Application Instance
# =============================================================================

# uvicorn knowledge_engine.api.main:app
app = create_app()


# =============================================================================
# Development Server
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "knowledge_engine.api.main:app",
        host=settings.backend_host,
        port=settings.backend_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
