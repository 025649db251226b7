"""Embedding model selection from configuration."""

from loguru import logger

from .base_embedding_model import BaseEmbeddingModel
from .ollama_embedding_model import OllamaEmbeddingModel
from .openai_embedding_model import AzureOpenAIEmbeddingModel, OpenAIEmbeddingModel
from ..enumeration import EmbeddingBackend
from ..schema import EmbeddingModelConfig

EMBEDDING_MODELS: dict[EmbeddingBackend, type[BaseEmbeddingModel]] = {
    EmbeddingBackend.OPENAI: OpenAIEmbeddingModel,
    EmbeddingBackend.AZURE_OPENAI: AzureOpenAIEmbeddingModel,
    EmbeddingBackend.OLLAMA: OllamaEmbeddingModel,
}


def create_embedding_model(config: EmbeddingModelConfig) -> BaseEmbeddingModel:
    """Build the embedding model selected by ``config.backend``."""
    model_cls = EMBEDDING_MODELS[EmbeddingBackend(config.backend)]

    kwargs = {
        "api_key": config.api_key,
        "base_url": config.base_url,
        "model_name": config.model_name,
        "dimensions": config.dimensions,
        "max_retries": config.max_retries,
        "max_input_length": config.max_input_length,
        "max_cache_size": config.max_cache_size,
        "timeout": config.timeout,
    }
    if model_cls is AzureOpenAIEmbeddingModel:
        kwargs["api_version"] = config.api_version

    model = model_cls(**kwargs)
    logger.info(f"Using {model.provider_name} embeddings: {model.model_name} ({model.dimensions} dims)")
    return model
