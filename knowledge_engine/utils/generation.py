"""
Bedrock Nova text generation adapter.

Implements the GenerativeModelProvider interface: ``generate(prompt)`` sends
one user message to the configured Nova model and returns the response text.
Used by the answer synthesizer and by knowledge extraction.

Unlike the embedding adapter, failures raise GenerationError; callers decide
the fallback (extractive answer, nothing extracted).

Usage:
    from knowledge_engine.utils.generation import BedrockGenerativeModel

    model = BedrockGenerativeModel(settings)
    answer = await model.generate("Summarize ...")
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog
from botocore.exceptions import ClientError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.utils.bedrock import create_bedrock_client

logger = structlog.get_logger(__name__)

MAX_RETRIES = 3
MIN_RETRY_WAIT = 1  # seconds
MAX_RETRY_WAIT = 10  # seconds


# =============================================================================
# Custom Exceptions
# =============================================================================


class GenerationError(Exception):
    """Base exception for text generation."""

    pass


class GenerationModelError(GenerationError):
    """The model call failed or returned an unusable response."""

    pass


# =============================================================================
# BedrockGenerativeModel Class
# =============================================================================


class BedrockGenerativeModel:
    """
    Nova text generation through bedrock-runtime ``invoke_model``.

    Attributes:
        model_id: Bedrock model ID (e.g. amazon.nova-lite-v1:0).
        max_tokens: Response token cap.
        temperature: Sampling temperature.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Any = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.model_id = self._settings.bedrock_model_id
        self.max_tokens = self._settings.generation_max_tokens
        self.temperature = self._settings.generation_temperature

        self._client = client
        self._log = logger.bind(component="generation", model_id=self.model_id)

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = create_bedrock_client(self._settings)
            except Exception as e:
                self._log.error("bedrock_client_creation_failed", error=str(e))
                raise GenerationModelError(
                    f"Failed to create Bedrock client: {e}"
                ) from e
        return self._client

    @retry(
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_RETRY_WAIT, max=MAX_RETRY_WAIT),
        retry=retry_if_exception_type((ClientError,)),
        reraise=True,
    )
    async def _invoke_nova(self, prompt: str) -> str:
        client = self._get_client()

        body = json.dumps(
            {
                "messages": [
                    {
                        "role": "user",
                        "content": [{"text": prompt}],
                    }
                ],
                "inferenceConfig": {
                    "maxTokens": self.max_tokens,
                    "temperature": self.temperature,
                },
            }
        )

        try:
            response = await asyncio.to_thread(
                client.invoke_model,
                modelId=self.model_id,
                body=body,
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            self._log.warning(
                "nova_invocation_failed",
                error_code=error_code,
                error=str(e),
            )
            raise

        try:
            response_body = json.loads(response["body"].read())
        except json.JSONDecodeError as e:
            raise GenerationModelError(f"Failed to parse response: {e}") from e

        content = response_body.get("output", {}).get("message", {}).get("content", [])
        if content and isinstance(content, list):
            text = content[0].get("text", "").strip()
            if not text:
                raise GenerationModelError("Empty response from model")
            return text

        raise GenerationModelError("Unexpected response format")

    async def generate(self, prompt: str) -> str:
        """
        Generate a completion for ``prompt``.

        Raises:
            GenerationError: On any model failure, including throttling that
                outlasts the retry budget.
        """
        try:
            text = await self._invoke_nova(prompt)
        except GenerationError:
            raise
        except ClientError as e:
            raise GenerationModelError(f"Bedrock invocation failed: {e}") from e
        except Exception as e:
            self._log.error("generation_failed", error=str(e))
            raise GenerationModelError(f"Generation failed: {e}") from e

        self._log.debug(
            "generation_complete",
            prompt_length=len(prompt),
            response_length=len(text),
        )
        return text


__all__ = [
    "BedrockGenerativeModel",
    "GenerationError",
    "GenerationModelError",
]
