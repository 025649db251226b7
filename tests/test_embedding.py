"""Tests for embedding models: validation, retries, caching and backends."""

import json
import math

import httpx
import pytest
from openai import AsyncOpenAI

from memdex.core.embedding import (
    AzureOpenAIEmbeddingModel,
    BaseEmbeddingModel,
    OllamaEmbeddingModel,
    OpenAIEmbeddingModel,
    create_embedding_model,
)
from memdex.core.enumeration import EmbeddingBackend
from memdex.core.exceptions import EmbeddingProviderError
from memdex.core.schema import EmbeddingModelConfig


class ScriptedEmbeddingModel(BaseEmbeddingModel):
    """Returns queued responses; an Exception in the queue is raised instead."""

    def __init__(self, responses: list, **kwargs):
        kwargs.setdefault("retry_delay", 0.0)
        super().__init__(model_name="scripted", **kwargs)
        self.responses = list(responses)
        self.calls = 0

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        self.calls += 1
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return [response]


async def test_retries_then_succeeds():
    model = ScriptedEmbeddingModel([RuntimeError("timeout"), RuntimeError("timeout"), [1.0, 2.0]], max_retries=3)

    embedding = await model.get_embedding("text")

    assert embedding == [1.0, 2.0]
    assert model.calls == 3
    assert model.dimensions == 2


async def test_exhausted_retries_raise_provider_error():
    model = ScriptedEmbeddingModel([RuntimeError("down")] * 2, max_retries=2, dimensions=2)

    with pytest.raises(EmbeddingProviderError) as exc_info:
        await model.get_embedding("text")

    assert exc_info.value.model == "scripted"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert model.calls == 2


@pytest.mark.parametrize(
    "bad_output",
    [
        [],
        [1.0, 2.0],
        [1.0, math.nan, 3.0],
        [1.0, math.inf, 3.0],
        [[1.0, 2.0, 3.0]],
        ["a", "b", "c"],
    ],
)
async def test_garbled_output_is_rejected(bad_output):
    model = ScriptedEmbeddingModel([bad_output], max_retries=1, dimensions=3)

    with pytest.raises(EmbeddingProviderError):
        await model.get_embedding("text")


async def test_output_is_float32_normalised():
    model = ScriptedEmbeddingModel([[0.1, 0.2, 0.3]], max_retries=1, dimensions=3)

    embedding = await model.get_embedding("text")

    assert embedding != [0.1, 0.2, 0.3]
    assert embedding == pytest.approx([0.1, 0.2, 0.3], rel=1e-6)


async def test_lru_cache_hits_and_eviction():
    model = ScriptedEmbeddingModel([[1.0], [2.0], [3.0], [4.0]], max_retries=1, max_cache_size=2)

    assert await model.get_embedding("a") == [1.0]
    assert await model.get_embedding("a") == [1.0]
    assert model.calls == 1

    await model.get_embedding("b")
    await model.get_embedding("c")  # evicts "a"
    assert await model.get_embedding("a") == [4.0]
    assert model.calls == 4

    stats = model.get_cache_stats()
    assert stats["cache_size"] == 2
    assert stats["cache_hits"] == 1

    model.clear_cache()
    assert model.get_cache_stats()["cache_size"] == 0


async def test_long_input_is_truncated():
    seen = []

    class Recording(ScriptedEmbeddingModel):
        async def _get_embeddings(self, input_text: list[str], **kwargs):
            seen.extend(input_text)
            return [[1.0]]

    model = Recording([], max_input_length=10)
    await model.get_embedding("x" * 50)

    assert seen == ["x" * 10]


def test_model_key_identifies_provider_model_and_dimensions():
    model = OpenAIEmbeddingModel(api_key="test")

    assert model.model_name == "text-embedding-3-small"
    assert model.dimensions == 1536
    assert model.model_key == "openai/text-embedding-3-small/1536"


def test_factory_selects_backend():
    ollama = create_embedding_model(EmbeddingModelConfig(backend=EmbeddingBackend.OLLAMA))
    assert isinstance(ollama, OllamaEmbeddingModel)
    assert ollama.model_key == "ollama/nomic-embed-text/768"

    azure = create_embedding_model(
        EmbeddingModelConfig(
            backend="azure_openai",
            model_name="my-deployment",
            dimensions=256,
            api_key="test",
            base_url="https://example.openai.azure.com",
            api_version="2024-06-01",
        ),
    )
    assert isinstance(azure, AzureOpenAIEmbeddingModel)
    assert azure.api_version == "2024-06-01"
    assert azure.dimensions == 256
    assert azure.provider_name == "azure_openai"


async def test_ollama_backend_posts_prompt():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [0.5, 0.25, 0.125]})

    client = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))
    model = OllamaEmbeddingModel(model_name="custom-embed", client=client, retry_delay=0.0)

    embedding = await model.get_embedding("hello ollama")
    await model.close()

    assert embedding == [0.5, 0.25, 0.125]
    assert model.dimensions == 3
    assert requests == [{"model": "custom-embed", "prompt": "hello ollama"}]


async def test_ollama_http_error_becomes_provider_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "model not loaded"})

    client = httpx.AsyncClient(base_url="http://ollama.test", transport=httpx.MockTransport(handler))
    model = OllamaEmbeddingModel(client=client, max_retries=2, retry_delay=0.0)

    with pytest.raises(EmbeddingProviderError):
        await model.get_embedding("hello")
    await model.close()


async def test_openai_backend_sends_dimensions():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        return httpx.Response(
            200,
            json={
                "object": "list",
                "data": [{"object": "embedding", "index": 0, "embedding": [0.0, 1.0, 0.0, 0.0]}],
                "model": body["model"],
                "usage": {"prompt_tokens": 2, "total_tokens": 2},
            },
        )

    model = OpenAIEmbeddingModel(model_name="text-embedding-3-small", dimensions=4, api_key="test", retry_delay=0.0)
    model._client = AsyncOpenAI(
        api_key="test",
        base_url="http://openai.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )

    embedding = await model.get_embedding("hello openai")
    await model.close()

    assert embedding == [0.0, 1.0, 0.0, 0.0]
    assert requests[0]["dimensions"] == 4
    assert requests[0]["input"] == ["hello openai"]
    assert requests[0]["encoding_format"] == "float"
