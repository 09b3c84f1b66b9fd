from __future__ import annotations

import io
import json
from typing import Any

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from knowledge_engine.config.settings import Settings
from knowledge_engine.utils.embeddings import (
    BedrockEmbeddings,
    EmbeddingModelError,
    QueryVectorCache,
)
from knowledge_engine.utils.generation import BedrockGenerativeModel, GenerationError


class _StubBedrockClient:
    """Minimal bedrock-runtime stand-in recording invoke_model calls."""

    def __init__(self, payload: Any = None, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def invoke_model(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        raw = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return {"body": io.BytesIO(raw.encode("utf-8"))}


def _settings(**overrides: Any) -> Settings:
    return Settings(
        _env_file=None,
        environment="local",
        aws_access_key_id=None,
        aws_secret_access_key=None,
        **overrides,
    )


def _client_error(code: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": "nope"}}, "InvokeModel")


# -----------------------------------------------------------------------------
# Embeddings
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_embed_sends_titan_v2_body_and_caches() -> None:
    client = _StubBedrockClient({"embedding": [0.1, 0.2], "inputTextTokenCount": 2})
    embeddings = BedrockEmbeddings(_settings(), client=client)

    first = await embeddings.embed("  Acme   revenue ")
    second = await embeddings.embed("Acme revenue")

    assert first == second == [0.1, 0.2]
    assert len(client.calls) == 1
    body = json.loads(client.calls[0]["body"])
    assert body == {"inputText": "Acme revenue", "dimensions": 1024, "normalize": True}
    assert client.calls[0]["modelId"] == "amazon.titan-embed-text-v2:0"


def test_query_cache_evicts_least_recently_used() -> None:
    cache = QueryVectorCache(max_entries=2)
    cache.put("a", [1.0])
    cache.put("b", [2.0])
    cache.get("a")
    cache.put("c", [3.0])

    assert cache.get("b") is None
    assert cache.get("a") == [1.0]
    assert len(cache) == 2


@pytest.mark.asyncio
async def test_embed_is_disabled_without_credentials() -> None:
    embeddings = BedrockEmbeddings(_settings())

    assert embeddings.enabled is False
    assert await embeddings.embed("Acme") == []


@pytest.mark.asyncio
async def test_embed_returns_empty_on_provider_error() -> None:
    client = _StubBedrockClient(error=_client_error("ValidationException"))
    embeddings = BedrockEmbeddings(_settings(), client=client)

    assert await embeddings.embed("Acme") == []
    with pytest.raises(EmbeddingModelError):
        await embeddings.embed_text("Acme")


@pytest.mark.asyncio
async def test_embed_returns_empty_when_bedrock_is_unreachable() -> None:
    client = _StubBedrockClient(
        error=EndpointConnectionError(endpoint_url="https://bedrock-runtime.us-east-1.amazonaws.com")
    )
    embeddings = BedrockEmbeddings(_settings(), client=client)

    assert await embeddings.embed("Acme revenue") == []
    with pytest.raises(EmbeddingModelError):
        await embeddings.embed_text("Acme revenue")


@pytest.mark.asyncio
async def test_embed_blank_text_is_empty() -> None:
    client = _StubBedrockClient({"embedding": [0.1]})

    assert await BedrockEmbeddings(_settings(), client=client).embed("   ") == []
    assert client.calls == []


# -----------------------------------------------------------------------------
# Generation
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_parses_nova_response() -> None:
    client = _StubBedrockClient(
        {"output": {"message": {"content": [{"text": " 答案 [1] "}]}}}
    )
    model = BedrockGenerativeModel(_settings(generation_max_tokens=256), client=client)

    assert await model.generate("問題") == "答案 [1]"
    body = json.loads(client.calls[0]["body"])
    assert body["messages"][0]["content"][0]["text"] == "問題"
    assert body["inferenceConfig"]["maxTokens"] == 256
    assert client.calls[0]["modelId"] == "amazon.nova-lite-v1:0"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "not json",
        {"output": {"message": {"content": [{"text": "   "}]}}},
        {"unexpected": True},
    ],
)
async def test_generate_failures_raise_generation_error(payload: Any) -> None:
    model = BedrockGenerativeModel(_settings(), client=_StubBedrockClient(payload))

    with pytest.raises(GenerationError):
        await model.generate("問題")
