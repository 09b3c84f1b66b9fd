"""API middleware: structured logging setup and request context binding."""

from knowledge_engine.api.middleware.logging import (
    bind_request_context,
    clear_context,
    configure_logging,
)

__all__ = [
    "configure_logging",
    "bind_request_context",
    "clear_context",
]
