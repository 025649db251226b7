"""memdex"""

from . import core
from .core.enumeration import EmbeddingBackend, MemorySource, SyncPhase
from .core.exceptions import (
    EmbeddingProviderError,
    FileAccessError,
    InvalidQueryError,
    MemdexError,
    MemoryNotInitializedError,
    MemoryStoreError,
)
from .core.schema import (
    MemoryConfig,
    MemorySearchOptions,
    MemorySearchResult,
    MemoryStatus,
    SessionSummary,
    SessionTranscript,
    SyncOptions,
    SyncProgress,
    TranscriptEntry,
)
from .memory_manager import MemoryManager

__all__ = [
    "core",
    "MemoryManager",
    # Enumerations
    "EmbeddingBackend",
    "MemorySource",
    "SyncPhase",
    # Errors
    "EmbeddingProviderError",
    "FileAccessError",
    "InvalidQueryError",
    "MemdexError",
    "MemoryNotInitializedError",
    "MemoryStoreError",
    # Schemas
    "MemoryConfig",
    "MemorySearchOptions",
    "MemorySearchResult",
    "MemoryStatus",
    "SessionSummary",
    "SessionTranscript",
    "SyncOptions",
    "SyncProgress",
    "TranscriptEntry",
]

__version__ = "0.1.0"
