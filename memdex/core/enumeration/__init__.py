"""enumeration"""

from .embedding_backend import EmbeddingBackend
from .memory_source import MemorySource
from .sync_phase import SyncPhase

__all__ = [
    "EmbeddingBackend",
    "MemorySource",
    "SyncPhase",
]
