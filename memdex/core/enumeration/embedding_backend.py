"""Embedding backend types."""

from enum import Enum


class EmbeddingBackend(str, Enum):
    """Closed set of supported embedding providers."""

    OPENAI = "openai"

    AZURE_OPENAI = "azure_openai"

    OLLAMA = "ollama"
