"""
Bedrock client factory shared by the embedding and generation adapters and
the health check.

In AWS the client picks up the IAM role. Locally the explicit key pair from
settings is passed through, since pydantic-settings reads .env files that
boto3 itself never sees.
"""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from botocore.config import Config

from knowledge_engine.config import Settings

logger = structlog.get_logger(__name__)

# Retries are handled by tenacity in the callers
_BOTO_CONFIG = Config(retries={"max_attempts": 1, "mode": "standard"})


def create_bedrock_client(settings: Settings, service: str = "bedrock-runtime") -> Any:
    """
    Create a Bedrock client for the configured region.

    Args:
        settings: Region and optional local credentials.
        service: ``bedrock-runtime`` for model calls, ``bedrock`` for the
            control plane (model listing).
    """
    kwargs: dict[str, Any] = {
        "region_name": settings.aws_region,
        "config": _BOTO_CONFIG,
    }
    if not settings.is_aws() and settings.aws_access_key_id and settings.aws_secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws_access_key_id.get_secret_value()
        kwargs["aws_secret_access_key"] = settings.aws_secret_access_key.get_secret_value()

    client = boto3.client(service, **kwargs)
    logger.debug("bedrock_client_created", service=service, region=settings.aws_region)
    return client


__all__ = ["create_bedrock_client"]
