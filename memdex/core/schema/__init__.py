"""schema"""

from .file_metadata import FileMetadata
from .memory_chunk import MemoryChunk, TextChunk
from .memory_config import (
    ChunkingConfig,
    EmbeddingModelConfig,
    MemoryConfig,
    SearchConfig,
    WatchConfig,
)
from .memory_index_meta import MemoryIndexMeta
from .memory_search_result import MemorySearchResult
from .memory_status import MemoryStatus
from .search_options import MemorySearchOptions
from .session_transcript import SessionSummary, SessionTranscript, TranscriptEntry
from .sync_progress import SyncOptions, SyncProgress

__all__ = [
    "ChunkingConfig",
    "EmbeddingModelConfig",
    "FileMetadata",
    "MemoryChunk",
    "MemoryConfig",
    "MemoryIndexMeta",
    "MemorySearchOptions",
    "MemorySearchResult",
    "MemoryStatus",
    "SearchConfig",
    "SessionSummary",
    "SessionTranscript",
    "SyncOptions",
    "SyncProgress",
    "TextChunk",
    "TranscriptEntry",
    "WatchConfig",
]
