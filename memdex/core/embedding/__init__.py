"""embedding"""

from .base_embedding_model import BaseEmbeddingModel
from .factory import EMBEDDING_MODELS, create_embedding_model
from .ollama_embedding_model import OllamaEmbeddingModel
from .openai_embedding_model import AzureOpenAIEmbeddingModel, OpenAIEmbeddingModel

__all__ = [
    "AzureOpenAIEmbeddingModel",
    "BaseEmbeddingModel",
    "EMBEDDING_MODELS",
    "OllamaEmbeddingModel",
    "OpenAIEmbeddingModel",
    "create_embedding_model",
]
