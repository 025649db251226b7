"""utils"""

from .chunking_utils import chunk_text, estimate_tokens, is_markdown
from .common_utils import (
    batch_cosine_similarity,
    blob_to_vector,
    cosine_similarity,
    hash_bytes,
    hash_text,
    to_float32,
    vector_to_blob,
)
from .logger_utils import init_logger

__all__ = [
    "batch_cosine_similarity",
    "blob_to_vector",
    "chunk_text",
    "cosine_similarity",
    "estimate_tokens",
    "hash_bytes",
    "hash_text",
    "init_logger",
    "is_markdown",
    "to_float32",
    "vector_to_blob",
]
