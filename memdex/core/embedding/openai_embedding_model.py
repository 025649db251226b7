"""OpenAI-compatible embedding model implementations for memdex."""

from openai import AsyncAzureOpenAI, AsyncOpenAI

from .base_embedding_model import BaseEmbeddingModel
from ..enumeration import EmbeddingBackend


class OpenAIEmbeddingModel(BaseEmbeddingModel):
    """Embedding model backed by the OpenAI embeddings API."""

    backend = EmbeddingBackend.OPENAI
    default_model_name = "text-embedding-3-small"
    default_dimensions = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(self, encoding_format: str = "float", timeout: float = 60.0, **kwargs):
        super().__init__(**kwargs)
        self.encoding_format = encoding_format
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        """Lazily created API client."""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        # Retries are handled by the base class
        return AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout, max_retries=0)

    @property
    def supports_dimensions(self) -> bool:
        """Only the text-embedding-3 family accepts a ``dimensions`` parameter."""
        return self.model_name.startswith("text-embedding-3")

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        params = {
            "model": self.model_name,
            "input": input_text,
            "encoding_format": self.encoding_format,
        }
        if self.dimensions and self.supports_dimensions:
            params["dimensions"] = self.dimensions

        completion = await self.client.embeddings.create(**params, **self.kwargs, **kwargs)

        result_emb = [[] for _ in range(len(input_text))]
        for emb in completion.data:
            result_emb[emb.index] = emb.embedding
        return result_emb

    async def close(self):
        """Close the OpenAI client and release network resources."""
        if self._client is not None:
            await self._client.close()
            self._client = None


class AzureOpenAIEmbeddingModel(OpenAIEmbeddingModel):
    """Embedding model backed by an Azure OpenAI deployment.

    ``model_name`` is the deployment name and ``base_url`` the resource endpoint.
    """

    backend = EmbeddingBackend.AZURE_OPENAI

    def __init__(self, api_version: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.api_version = api_version or "2024-02-01"

    @property
    def supports_dimensions(self) -> bool:
        return "embedding-3" in self.model_name

    def _create_client(self):
        return AsyncAzureOpenAI(
            api_key=self.api_key,
            azure_endpoint=self.base_url,
            api_version=self.api_version,
            timeout=self.timeout,
            max_retries=0,
        )
