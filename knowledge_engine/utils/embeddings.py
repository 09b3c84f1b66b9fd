"""
Bedrock Titan embeddings adapter for query vectorization.

Implements the EmbeddingProvider interface used by the retrieval engines:
``embed(text)`` returns the query vector, or an empty list when the provider
is unavailable. An empty vector tells the engines to skip vector similarity
and rank lexically, so a Bedrock outage degrades ranking instead of failing
the query.

Usage:
    from knowledge_engine.utils.embeddings import BedrockEmbeddings

    embeddings = BedrockEmbeddings(settings)
    vector = await embeddings.embed("Who founded the company?")
    if not vector:
        ...  # lexical-only ranking

Cost Notes:
    - Titan v2 embeddings: ~$0.00002 per 1K tokens
    - Repeated queries are served from an in-memory LRU cache
"""

from __future__ import annotations

import asyncio
import json
from collections import OrderedDict
from typing import Any

import structlog
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.utils.bedrock import create_bedrock_client

logger = structlog.get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Titan v2 accepts ~8K tokens; ~4 chars per token
MAX_INPUT_CHARS = 25000

# Output sizes Titan v2 can produce
TITAN_V2_DIMENSIONS = frozenset({256, 512, 1024})

RETRY_ATTEMPTS = 3
RETRY_WAIT_MIN = 1  # seconds
RETRY_WAIT_MAX = 10  # seconds

QUERY_CACHE_SIZE = 1000


# =============================================================================
# Exceptions
# =============================================================================


class EmbeddingError(Exception):
    """Embedding could not be produced."""


class EmbeddingModelError(EmbeddingError):
    """Bedrock rejected the call or returned an unusable body."""


class EmbeddingInputError(EmbeddingError):
    """Nothing left to embed after whitespace normalization."""


# =============================================================================
# Query cache
# =============================================================================


class QueryVectorCache:
    """LRU map from normalized query text to its vector. Size 0 disables it."""

    def __init__(self, max_entries: int = QUERY_CACHE_SIZE) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, list[float]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, text: str) -> list[float] | None:
        vector = self._entries.get(text)
        if vector is not None:
            self._entries.move_to_end(text)
        return vector

    def put(self, text: str, vector: list[float]) -> None:
        if self.max_entries <= 0:
            return
        self._entries[text] = vector
        self._entries.move_to_end(text)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


def normalize_query_text(text: str | None) -> str:
    """Collapse whitespace runs and cut to the Titan input limit."""
    collapsed = " ".join((text or "").split())
    return collapsed[:MAX_INPUT_CHARS]


# =============================================================================
# BedrockEmbeddings
# =============================================================================


class BedrockEmbeddings:
    """
    Query embedding adapter for AWS Bedrock Titan models.

    Attributes:
        model_id: Bedrock embedding model.
        dimensions: Requested output dimension (must match the index column).
        enabled: False when no credentials are configured; embed() then
            returns [] without calling Bedrock.
        cache: Vectors for recently embedded queries.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any = None,
        cache_size: int = QUERY_CACHE_SIZE,
    ) -> None:
        """
        Args:
            settings: Source of model id, region and dimensions.
            client: Pre-built bedrock-runtime client; tests inject a stub.
            cache_size: Maximum cached query vectors; 0 disables caching.
        """
        self._settings = settings or get_settings()
        self.model_id = self._settings.bedrock_embedding_model_id
        self.dimensions = self._settings.embedding_dimensions
        self.enabled = client is not None or self._settings.model_configured()
        self.cache = QueryVectorCache(cache_size)

        self._client = client
        self._log = logger.bind(component="embeddings", model_id=self.model_id)
        self._log.info(
            "embeddings_ready",
            enabled=self.enabled,
            dimensions=self.dimensions,
            cache_size=cache_size,
        )

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = create_bedrock_client(self._settings)
            except Exception as e:
                raise EmbeddingModelError(f"Cannot reach Bedrock: {e}") from e
        return self._client

    def _payload(self, text: str) -> str:
        payload: dict[str, Any] = {"inputText": text}
        # Only Titan v2 takes an output size, and only from a fixed set
        if "titan-embed-text-v2" in self.model_id and self.dimensions in TITAN_V2_DIMENSIONS:
            payload.update(dimensions=self.dimensions, normalize=True)
        return json.dumps(payload)

    @retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(ClientError),
        reraise=True,
    )
    async def _call_titan(self, text: str) -> list[float]:
        """One invoke_model round trip. Throttling propagates for tenacity to retry."""
        try:
            response = await asyncio.to_thread(
                self.client.invoke_model,
                modelId=self.model_id,
                body=self._payload(text),
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            code = error.get("Code", "Unknown")
            if code == "ThrottlingException":
                self._log.warning("embedding_throttled")
                raise
            self._log.error("embedding_call_rejected", error_code=code)
            raise EmbeddingModelError(
                f"Titan rejected the request ({code}): {error.get('Message', e)}"
            ) from e
        except EmbeddingError:
            raise
        except BotoCoreError as e:
            # Connection, timeout and credential failures never reach the service
            self._log.error("embedding_call_failed", error_type=type(e).__name__)
            raise EmbeddingModelError(f"Cannot reach Bedrock: {e}") from e
        except Exception as e:
            self._log.error("embedding_call_failed", error_type=type(e).__name__)
            raise EmbeddingModelError(f"Embedding call failed: {e}") from e

        try:
            body = json.loads(response["body"].read())
        except (json.JSONDecodeError, KeyError, AttributeError) as e:
            raise EmbeddingModelError(f"Unreadable Titan response: {e}") from e

        vector = body.get("embedding") if isinstance(body, dict) else None
        if not vector:
            raise EmbeddingModelError("Titan response carried no embedding")

        self._log.debug(
            "query_embedded",
            dimension=len(vector),
            input_tokens=body.get("inputTextTokenCount", 0),
        )
        return [float(v) for v in vector]

    async def embed_text(self, text: str) -> list[float]:
        """
        Embed ``text``, raising on failure.

        Raises:
            EmbeddingInputError: Blank text.
            EmbeddingModelError: Bedrock failed or answered badly.
            ClientError: Throttling outlasted the retries.
        """
        normalized = normalize_query_text(text)
        if not normalized:
            raise EmbeddingInputError("text is blank")

        vector = self.cache.get(normalized)
        if vector is None:
            vector = await self._call_titan(normalized)
            self.cache.put(normalized, vector)
        return vector

    async def embed(self, text: str) -> list[float]:
        """Query vector, or [] when disabled or failing. Never raises."""
        if not self.enabled:
            return []
        try:
            return await self.embed_text(text)
        except (EmbeddingError, ClientError, BotoCoreError) as e:
            self._log.warning(
                "embedding_unavailable",
                error=str(e),
                error_type=type(e).__name__,
            )
            return []


__all__ = [
    "BedrockEmbeddings",
    "QueryVectorCache",
    "normalize_query_text",
    "EmbeddingError",
    "EmbeddingModelError",
    "EmbeddingInputError",
]
