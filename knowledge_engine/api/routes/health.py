"""
Health check endpoint with dependency checks.

Used by load balancers and deployment pipelines to verify the API is up and
its search index is reachable.

Status Logic:
    - "ok": every check passed or was skipped
    - "degraded": at least one check failed; the API still answers, possibly
      with reduced ranking quality or extractive answers

Example Response:
    {
        "status": "ok",
        "environment": "local",
        "version": "0.1.0",
        "api_version": "v1",
        "checks": {
            "database": {"status": "ok", "latency_ms": 4},
            "bedrock": {"status": "skipped", "error": "AWS credentials not configured"}
        }
    }
"""

from __future__ import annotations

import asyncio
import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from knowledge_engine.api import __api_version__, __version__
from knowledge_engine.config import get_settings
from knowledge_engine.utils.bedrock import create_bedrock_client

# Module logger
logger = structlog.get_logger(__name__)

# Timeout for dependency checks (seconds)
CHECK_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Response Models
# =============================================================================


class DependencyCheckResult(BaseModel):
    """Result of a single dependency check."""

    status: str = Field(
        ...,
        description="Check status: ok, error, or skipped",
        examples=["ok"],
    )
    latency_ms: int | None = Field(
        default=None,
        description="Latency in milliseconds (database check)",
        examples=[4],
    )
    error: str | None = Field(
        default=None,
        description="Error message if the check failed or was skipped",
        examples=[None],
    )


class DependencyChecks(BaseModel):
    """Container for all dependency check results."""

    database: DependencyCheckResult = Field(
        ...,
        description="Search index (PostgreSQL) connectivity",
    )
    bedrock: DependencyCheckResult = Field(
        ...,
        description="AWS Bedrock availability",
    )


class HealthResponse(BaseModel):
    """Response model for the health check endpoint."""

    status: str = Field(..., examples=["ok"])
    environment: str = Field(..., examples=["local"])
    version: str = Field(..., examples=["0.1.0"])
    api_version: str = Field(..., examples=["v1"])
    checks: DependencyChecks


# =============================================================================
# Dependency Check Functions
# =============================================================================


async def check_database(request: Request) -> DependencyCheckResult:
    """
    Ping the search index through the running KnowledgeService.

    Returns status="skipped" when no service (or no index store) is attached
    to the application.
    """
    service = getattr(request.app.state, "knowledge_service", None)
    index_store = getattr(service, "index_store", None)
    ping = getattr(index_store, "ping", None)
    if ping is None:
        return DependencyCheckResult(status="skipped", error="Search index not configured")

    try:
        start_time = time.perf_counter()
        reachable = await asyncio.wait_for(ping(), timeout=CHECK_TIMEOUT_SECONDS)
        latency_ms = int((time.perf_counter() - start_time) * 1000)
    except asyncio.TimeoutError:
        logger.warning("database_check_timeout", timeout_seconds=CHECK_TIMEOUT_SECONDS)
        return DependencyCheckResult(
            status="error",
            error=f"Database check timed out after {CHECK_TIMEOUT_SECONDS}s",
        )
    except Exception as exc:
        logger.warning(
            "database_check_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return DependencyCheckResult(status="error", error=str(exc))

    if not reachable:
        return DependencyCheckResult(status="error", error="Search index unreachable")
    return DependencyCheckResult(status="ok", latency_ms=latency_ms)


async def check_bedrock() -> DependencyCheckResult:
    """
    Check AWS Bedrock availability by listing foundation models.

    Locally without credentials this returns "skipped"; embeddings and
    generation then degrade (lexical-only ranking, extractive answers).
    """
    settings = get_settings()

    if not settings.model_configured():
        return DependencyCheckResult(
            status="skipped",
            error="AWS credentials not configured",
        )

    def _list_models() -> None:
        create_bedrock_client(settings, service="bedrock").list_foundation_models()

    try:
        await asyncio.wait_for(
            asyncio.to_thread(_list_models),
            timeout=CHECK_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.warning("bedrock_check_timeout", timeout_seconds=CHECK_TIMEOUT_SECONDS)
        return DependencyCheckResult(
            status="error",
            error=f"Bedrock check timed out after {CHECK_TIMEOUT_SECONDS}s",
        )
    except Exception as exc:
        logger.warning(
            "bedrock_check_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return DependencyCheckResult(status="error", error=str(exc))

    return DependencyCheckResult(status="ok")


def determine_overall_status(checks: DependencyChecks) -> str:
    """Every dependency is optional for liveness, so failures only degrade."""
    statuses = [checks.database.status, checks.bedrock.status]
    if any(s == "error" for s in statuses):
        return "degraded"
    return "ok"


# =============================================================================
# Router
# =============================================================================

router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns API status plus search index and Bedrock checks.",
)
async def health_check(request: Request) -> HealthResponse:
    settings = get_settings()

    database, bedrock = await asyncio.gather(
        check_database(request),
        check_bedrock(),
    )
    checks = DependencyChecks(database=database, bedrock=bedrock)

    return HealthResponse(
        status=determine_overall_status(checks),
        environment=settings.environment,
        version=__version__,
        api_version=__api_version__,
        checks=checks,
    )


__all__ = [
    "router",
    "HealthResponse",
    "DependencyCheckResult",
    "check_database",
    "check_bedrock",
]
