"""File metadata schema."""

from pydantic import BaseModel, Field

from ..enumeration import MemorySource


class FileMetadata(BaseModel):
    """Indexed file row, one per (source, path)."""

    id: int | None = Field(default=None, description="Store-assigned file id")
    path: str = Field(default=..., description="Path relative to the source root, '/'-separated")
    source: MemorySource = Field(default=MemorySource.MEMORY, description="Source of the memory data")
    hash: str = Field(default=..., description="Digest of the raw file bytes")
    mtime_ms: float = Field(default=0.0, description="Last modification time in milliseconds")
    size: int = Field(default=0, description="File size in bytes")
    indexed_at: int | None = Field(default=None, description="Index time in epoch milliseconds")

    # Runtime-only fields
    abs_path: str | None = Field(default=None, description="Absolute path on disk")
    chunk_count: int | None = Field(default=None, description="Number of chunks in the file")
