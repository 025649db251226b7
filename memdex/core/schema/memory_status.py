"""Memory status schema."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class MemoryStatus(BaseModel):
    """Snapshot of the index state, replaced wholesale after each sync."""

    model_config = ConfigDict(frozen=True)

    total_files: int = Field(default=0, description="Indexed files across all sources")
    total_chunks: int = Field(default=0, description="Stored chunks across all sources")
    is_dirty: bool = Field(default=True, description="Whether changes are pending a sync")
    last_sync_at: datetime | None = Field(default=None, description="Completion time of the last sync")
    embedding_provider: str = Field(default="", description="Active embedding backend")
    embedding_model: str = Field(default="", description="Active embedding model")
    cached_embeddings: int = Field(default=0, description="Rows in the persistent embedding cache")
    database_size_bytes: int = Field(default=0, description="Size of the SQLite database file")
    memory_files: int = Field(default=0, description="Indexed memory files")
    session_files: int = Field(default=0, description="Indexed session transcripts")
