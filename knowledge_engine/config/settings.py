"""
Pydantic settings for the knowledge retrieval engine.

This module centralizes environment-driven configuration. It uses Pydantic
Settings v2 with SettingsConfigDict to load environment variables from .env
files and environment variables.

The configuration supports two environments:
- local: Development environment (Docker Compose postgres, optional Bedrock)
- aws: Production environment (IAM role credentials, Aurora PostgreSQL)

Retrieval policy constants (RRF k, routing threshold, traversal depth clamp,
etc.) live here as well so they can be tuned per deployment. Several
routing and fusion behaviors depend on these exact defaults.

Usage:
    from knowledge_engine.config.settings import get_settings, validate_config

    settings = get_settings()
    validate_config()

    print(settings.rrf_k)
    print(settings.graph_route_threshold)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for local development. Attributes
    are organized into logical groups:
    - Environment Configuration
    - AWS Bedrock Configuration
    - Database Configuration
    - Knowledge Graph Configuration
    - Retrieval Policy Configuration
    - Application Configuration
    - Logging Configuration
    """

    # =========================================================================
    # Environment Configuration
    # =========================================================================
    environment: str = Field(
        default="local",
        description=(
            "Runtime environment identifier. Use 'local' for development, "
            "'aws' for production."
        ),
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode. Set to False in production.",
    )

    # =========================================================================
    # AWS Bedrock Configuration
    # =========================================================================
    aws_region: str = Field(
        default="us-east-1",
        description="AWS region for Bedrock calls.",
    )

    aws_access_key_id: SecretStr | None = Field(
        default=None,
        description=(
            "AWS access key ID. Required for local development with real "
            "models. In production, use IAM roles instead."
        ),
    )

    aws_secret_access_key: SecretStr | None = Field(
        default=None,
        description="AWS secret access key for local development.",
    )

    bedrock_model_id: str = Field(
        default="amazon.nova-lite-v1:0",
        description="Bedrock model ID used for answer synthesis and extraction.",
    )

    bedrock_embedding_model_id: str = Field(
        default="amazon.titan-embed-text-v2:0",
        description="Bedrock model ID for generating query embeddings.",
    )

    embedding_dimensions: int = Field(
        default=1024,
        ge=1,
        description="Dimension of stored embeddings (must match the index).",
    )

    generation_max_tokens: int = Field(
        default=1024,
        ge=16,
        le=8192,
        description="Maximum tokens the generative model may produce.",
    )

    generation_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Sampling temperature for answer synthesis.",
    )

    # =========================================================================
    # Database Configuration
    # =========================================================================
    database_url: str | None = Field(
        default=None,
        description=(
            "PostgreSQL connection string for the search index and knowledge "
            "graph tables. If not provided, a URL is constructed from the "
            "postgres_* fields."
        ),
    )

    postgres_db: str = Field(default="workspace", description="Database name.")

    postgres_user: str = Field(default="workspace", description="Database user.")

    postgres_password: SecretStr = Field(
        default=SecretStr("workspace"),
        description="Database password.",
    )

    postgres_host: str = Field(
        default="postgres",
        description="PostgreSQL host name. Defaults to Docker Compose service name.",
    )

    postgres_port: int = Field(default=5432, description="PostgreSQL port.")

    text_search_config: str = Field(
        default="english",
        description="PostgreSQL text search configuration used for lexical ranking.",
    )

    @model_validator(mode="after")
    def populate_database_url(self) -> "Settings":
        """Construct database_url from the postgres_* parts when unset."""
        if not self.database_url:
            password = self.postgres_password.get_secret_value()
            self.database_url = (
                f"postgresql://{self.postgres_user}:{password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self

    # =========================================================================
    # Knowledge Graph Configuration
    # =========================================================================
    kg_store_type: str = Field(
        default="postgresql",
        description=(
            "Knowledge graph store type: 'postgresql' (recursive CTE traversal "
            "over kg_entities/kg_relationships) or 'neo4j'."
        ),
    )

    neo4j_uri: str = Field(
        default="bolt://neo4j:7687",
        description="Neo4j connection URI, used when kg_store_type is 'neo4j'.",
    )

    neo4j_user: str = Field(default="neo4j", description="Neo4j username.")

    neo4j_password: SecretStr = Field(
        default=SecretStr("neo4j_password"),
        description="Neo4j password.",
    )

    # =========================================================================
    # Retrieval Policy Configuration
    # =========================================================================
    rrf_k: int = Field(
        default=60,
        ge=1,
        description="Reciprocal Rank Fusion smoothing constant.",
    )

    hybrid_vector_weight: float = Field(
        default=0.5,
        description="Default weight of the vector score in hybrid search (0-1).",
    )

    graph_route_threshold: float = Field(
        default=0.55,
        description=(
            "Auto routing picks graph mode when entities match and the hybrid "
            "probe's top score is below this value."
        ),
    )

    max_traversal_depth: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Upper clamp for knowledge graph traversal depth.",
    )

    graph_traversal_depth: int = Field(
        default=2,
        ge=0,
        description="Neighborhood depth expanded per matched entity in graph mode.",
    )

    graph_chunk_score: float = Field(
        default=0.8,
        description="Pseudo-score assigned to synthetic graph neighborhood chunks.",
    )

    entity_match_limit: int = Field(
        default=5,
        ge=1,
        description="Maximum matched entities expanded by graph retrieval.",
    )

    router_entity_limit: int = Field(
        default=6,
        ge=1,
        description="Maximum entity hits fetched by the router's keyword probe.",
    )

    synthesis_max_chunks: int = Field(
        default=6,
        ge=1,
        description="Number of top chunks numbered into the synthesis prompt.",
    )

    default_top_k: int = Field(
        default=10,
        ge=1,
        description="Default number of fused candidates returned per query.",
    )

    max_top_k: int = Field(
        default=50,
        ge=1,
        description="Largest top_k a caller may request.",
    )

    sub_query_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=60.0,
        description=(
            "Timeout for each graph retrieval sub-query. A timed-out source "
            "contributes an empty list."
        ),
    )

    knowledge_router_enabled: bool = Field(
        default=True,
        description="Feature flag for the knowledge query endpoints.",
    )

    # =========================================================================
    # Application Configuration
    # =========================================================================
    backend_host: str = Field(
        default="0.0.0.0",
        description="Host address for the API server to bind to.",
    )

    backend_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port number for the API server.",
    )

    cors_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins.",
    )

    # =========================================================================
    # Logging Configuration
    # =========================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL.",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        validate_default=True,
        env_prefix="",
        env_nested_delimiter="__",
    )

    # =========================================================================
    # Validators
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level '{v}'. Must be one of: {valid_levels}")
        return upper_v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is either 'local' or 'aws'."""
        lower_v = v.lower()
        if lower_v not in {"local", "aws"}:
            raise ValueError(f"Invalid environment '{v}'. Must be 'local' or 'aws'.")
        return lower_v

    @field_validator("kg_store_type")
    @classmethod
    def validate_kg_store_type(cls, v: str) -> str:
        """Validate knowledge graph store type is supported."""
        lower_v = v.lower()
        if lower_v not in {"neo4j", "postgresql"}:
            raise ValueError(
                f"Invalid kg_store_type '{v}'. Must be 'neo4j' or 'postgresql'."
            )
        return lower_v

    @field_validator("hybrid_vector_weight", "graph_route_threshold")
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        """Weights and thresholds are fractions in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Value {v} must be between 0 and 1.")
        return v

    @model_validator(mode="after")
    def validate_top_k_bounds(self) -> "Settings":
        """default_top_k must not exceed max_top_k."""
        if self.default_top_k > self.max_top_k:
            raise ValueError(
                f"default_top_k ({self.default_top_k}) exceeds "
                f"max_top_k ({self.max_top_k})."
            )
        return self

    # =========================================================================
    # Helper Methods
    # =========================================================================
    def get_cors_origins_list(self) -> list[str]:
        """Parse the comma-separated cors_origins string into a list."""
        return [
            origin.strip() for origin in self.cors_origins.split(",") if origin.strip()
        ]

    def is_local(self) -> bool:
        """Check if running in local development environment."""
        return self.environment == "local"

    def is_aws(self) -> bool:
        """Check if running in AWS production environment."""
        return self.environment == "aws"

    def model_configured(self) -> bool:
        """
        Whether Bedrock calls can be attempted.

        In AWS the IAM role provides credentials. Locally both keys must be
        set, otherwise the engine runs with embeddings disabled and extractive
        answers.
        """
        if self.is_aws():
            return True
        return bool(self.aws_access_key_id and self.aws_secret_access_key)

    def get_database_url_async(self) -> str:
        """
        Get asynchronous database URL.

        Converts postgresql:// to postgresql+asyncpg:// for SQLAlchemy's
        asyncio engine.
        """
        if not self.database_url:
            raise ValueError(
                "database_url is not configured. Check environment settings."
            )
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace(
                "postgresql://", "postgresql+asyncpg://", 1
            )
        return self.database_url


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Cached so only one Settings instance is created per process. Tests call
    ``get_settings.cache_clear()`` after changing the environment.
    """
    return Settings()


def validate_config() -> dict[str, Any]:
    """
    Validate configuration on startup.

    Returns:
        dict: Validation result with status, environment and warnings.

    Raises:
        ValueError: If critical configuration is missing or invalid.
    """
    warnings: list[str] = []
    errors: list[str] = []

    try:
        settings = get_settings()
    except Exception as e:
        errors.append(f"Failed to load settings: {e}")
        raise ValueError(f"Configuration validation failed: {errors}") from e

    if not settings.model_configured():
        warnings.append(
            "AWS credentials not configured. Query embeddings are disabled "
            "(lexical-only ranking) and answers are extractive."
        )

    if settings.is_aws():
        if settings.debug:
            warnings.append(
                "DEBUG mode is enabled in AWS environment. "
                "Consider setting DEBUG=false for production."
            )
        if settings.postgres_password.get_secret_value() == "workspace":
            errors.append(
                "POSTGRES_PASSWORD is using the local default in AWS. "
                "Provide DATABASE_URL or a real password."
            )

    if settings.kg_store_type == "neo4j" and (
        settings.neo4j_password.get_secret_value() == "neo4j_password"
    ):
        warnings.append("NEO4J_PASSWORD is using the placeholder default.")

    if not settings.knowledge_router_enabled:
        warnings.append("Knowledge router is disabled; query endpoints return 404.")

    for warning in warnings:
        logger.warning(f"Configuration warning: {warning}")

    if errors:
        for error in errors:
            logger.error(f"Configuration error: {error}")
        raise ValueError(f"Configuration validation failed: {errors}")

    logger.info(
        f"Configuration validated successfully. Environment: {settings.environment}"
    )

    return {
        "status": "ok",
        "environment": settings.environment,
        "warnings": warnings,
        "settings_summary": {
            "debug": settings.debug,
            "aws_region": settings.aws_region,
            "kg_store_type": settings.kg_store_type,
            "model_configured": settings.model_configured(),
            "log_level": settings.log_level,
        },
    }


__all__ = [
    "Settings",
    "get_settings",
    "validate_config",
]
