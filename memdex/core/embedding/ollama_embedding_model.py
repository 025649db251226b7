"""Ollama embedding model implementation for memdex."""

import httpx

from .base_embedding_model import BaseEmbeddingModel
from ..enumeration import EmbeddingBackend

DEFAULT_OLLAMA_URL = "http://localhost:11434"


class OllamaEmbeddingModel(BaseEmbeddingModel):
    """Embedding model served by a local Ollama instance."""

    backend = EmbeddingBackend.OLLAMA
    default_model_name = "nomic-embed-text"
    default_dimensions = {
        "nomic-embed-text": 768,
        "mxbai-embed-large": 1024,
        "all-minilm": 384,
    }

    def __init__(self, timeout: float = 60.0, client: httpx.AsyncClient | None = None, **kwargs):
        super().__init__(**kwargs)
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.base_url or DEFAULT_OLLAMA_URL, timeout=self.timeout)
        return self._client

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        # /api/embeddings takes one prompt per request
        results = []
        for text in input_text:
            response = await self.client.post("/api/embeddings", json={"model": self.model_name, "prompt": text})
            response.raise_for_status()
            results.append(response.json().get("embedding"))
        return results

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
