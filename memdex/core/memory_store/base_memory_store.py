"""Base storage interface for the memory index."""

import re
from abc import ABC, abstractmethod
from pathlib import Path

from ..enumeration import MemorySource
from ..schema import FileMetadata, MemoryChunk, MemoryIndexMeta


class BaseMemoryStore(ABC):
    """Abstract base class for memory storage backends.

    The store is the source of truth for file and chunk rows. A file's chunk
    set is only ever replaced as a whole, inside one transaction.
    """

    def __init__(self, store_name: str, db_path: str | Path, **kwargs):
        """Initialize"""
        # Table names are built from store_name
        if not re.match(r"^[a-zA-Z0-9_]+$", store_name):
            raise ValueError(f"Invalid '{store_name}'. Only alphanumeric characters and underscores are allowed.")

        self.store_name: str = store_name
        self.db_path: Path = Path(db_path)
        self.kwargs: dict = kwargs

    @abstractmethod
    async def start(self):
        """Open the backend and create the schema."""

    @abstractmethod
    async def close(self):
        """Release the backend."""

    @abstractmethod
    async def get_file(self, path: str, source: MemorySource) -> FileMetadata | None:
        """Get the stored row for a file, or None when it is not indexed."""

    @abstractmethod
    async def list_files(self, source: MemorySource | None = None) -> list[FileMetadata]:
        """List indexed files, optionally for one source."""

    @abstractmethod
    async def replace_file(
        self,
        file_meta: FileMetadata,
        chunks: list[MemoryChunk],
    ) -> tuple[list[int], list[MemoryChunk]]:
        """Upsert a file row and swap its whole chunk set atomically.

        Returns:
            The ids of the removed chunks and the inserted chunks with their new ids
        """

    @abstractmethod
    async def delete_file(self, path: str, source: MemorySource) -> list[int]:
        """Delete a file and its chunks, returning the removed chunk ids."""

    @abstractmethod
    async def get_chunks(self, chunk_ids: list[int]) -> dict[int, MemoryChunk]:
        """Fetch chunks by id; ids that no longer exist are absent from the result."""

    @abstractmethod
    async def get_file_chunks(self, path: str, source: MemorySource) -> list[MemoryChunk]:
        """Get all chunks of a file, with embeddings, ordered by start line."""

    @abstractmethod
    async def list_embeddings(self, model_key: str) -> list[tuple[int, list[float], MemorySource]]:
        """List (chunk id, embedding, source) for every chunk embedded by ``model_key``."""

    @abstractmethod
    async def text_search(
        self,
        query: str,
        limit: int,
        sources: list[MemorySource] | None = None,
    ) -> list[tuple[int, float]]:
        """Lexical search.

        Returns:
            (chunk id, raw score) pairs, higher is better, best first
        """

    @abstractmethod
    async def get_cached_embedding(self, provider: str, model: str, text_hash: str) -> list[float] | None:
        """Look up a previously computed embedding."""

    @abstractmethod
    async def put_cached_embedding(self, provider: str, model: str, text_hash: str, embedding: list[float]):
        """Remember an embedding for later reuse."""

    @abstractmethod
    async def get_index_meta(self) -> MemoryIndexMeta | None:
        """Get the configuration the index was built with."""

    @abstractmethod
    async def set_index_meta(self, meta: MemoryIndexMeta):
        """Record the configuration the index is built with."""

    @abstractmethod
    async def get_stats(self) -> dict[str, int]:
        """Counts of files per source, chunks and cached embeddings, plus database size."""

    @abstractmethod
    async def clear_all(self):
        """Delete every file, chunk and cached embedding."""
