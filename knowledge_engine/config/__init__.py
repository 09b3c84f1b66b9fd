"""
Configuration package for engine settings.

Usage:
    from knowledge_engine.config import Settings, get_settings, validate_config

    settings = get_settings()
    print(settings.graph_route_threshold)

    # Create new instance (useful for testing)
    settings = Settings(rrf_k=30)
"""

from knowledge_engine.config.settings import (
    Settings,
    get_settings,
    validate_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "validate_config",
]
