"""
Structured logging setup for the knowledge engine.

Configures structlog once at application startup via configure_logging().
Every module then logs through ``structlog.get_logger(__name__)`` with
snake_case event names and key-value context.

Features:
    - JSON output in AWS (CloudWatch Logs Insights friendly)
    - Console output with colors for local development
    - stdlib logging integration so boto3/neo4j/sqlalchemy logs share the format
    - Redaction of credential-looking keys
    - Per-request context (workspace_id, request_id) via contextvars

CloudWatch Logs Insights Query Examples:
    # Routing decisions for one workspace
    fields @timestamp, mode_used, routing_reason
    | filter event = "knowledge_query_complete" and workspace_id = "ws-1"
    | sort @timestamp desc

Usage:
    from knowledge_engine.api.middleware.logging import configure_logging

    configure_logging(environment="aws", log_level="INFO")

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("hybrid_search_complete", results=10, total=42)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "api_key",
        "apikey",
        "secret",
        "authorization",
        "access_key",
        "secret_key",
        "private_key",
        "credential",
        "database_url",
    }
)

# Loggers that are noisy at INFO
_QUIET_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "botocore",
    "boto3",
    "neo4j",
    "sqlalchemy.engine",
    "asyncpg",
)


def _redact_sensitive_data(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Replace values of credential-looking keys with "[REDACTED]"."""
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
            event_dict[key] = "[REDACTED]"
    return event_dict


def configure_logging(
    environment: str = "local",
    log_level: str | None = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        environment: Runtime environment ('local' or 'aws'). AWS renders JSON,
            local renders a colored console format.
        log_level: Logging level name. Defaults to DEBUG locally, INFO in AWS.
    """
    if log_level is None:
        log_level = "DEBUG" if environment == "local" else "INFO"

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive_data,
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: Processor
    if environment == "aws":
        renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger = structlog.get_logger("logging.config")
    logger.info(
        "logging_configured",
        environment=environment,
        log_level=log_level,
        output_format="json" if environment == "aws" else "console",
    )


def bind_request_context(**context: Any) -> None:
    """
    Bind request-scoped values (workspace_id, request_id, mode) to all
    subsequent log events in the current context.

    Example:
        bind_request_context(workspace_id="ws-1", request_id=request_id)
        logger.info("knowledge_query_started")  # both keys included
    """
    structlog.contextvars.bind_contextvars(
        **{key: value for key, value in context.items() if value is not None}
    )


def clear_context() -> None:
    """Clear bound context variables at the end of a request."""
    structlog.contextvars.clear_contextvars()


__all__ = [
    "configure_logging",
    "bind_request_context",
    "clear_context",
]
