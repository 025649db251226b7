"""Sync options and progress schemas."""

from pydantic import BaseModel, Field

from ..enumeration import MemorySource, SyncPhase


class SyncOptions(BaseModel):
    """Options for one sync run."""

    reason: str | None = Field(default=None, description="Free-form trigger label used in logs")
    force: bool = Field(default=False, description="Reindex every file regardless of its hash")
    sources: list[MemorySource] | None = Field(default=None, description="Sources to sync, all when None")


class SyncProgress(BaseModel):
    """Progress event emitted while a sync runs."""

    phase: SyncPhase = Field(default=SyncPhase.SCANNING, description="Current phase")
    files_processed: int = Field(default=0, description="Files visited so far")
    total_files: int = Field(default=0, description="Files discovered by the scan")
    current_file: str | None = Field(default=None, description="File being processed")
    chunks_created: int = Field(default=0, description="Chunks written to the store")
    embeddings_generated: int = Field(default=0, description="Vectors obtained from the provider")
    embeddings_cached: int = Field(default=0, description="Vectors served by the embedding cache")
    files_skipped: int = Field(default=0, description="Files left alone because their hash matched")
    files_failed: int = Field(default=0, description="Files that could not be read")
    files_removed: int = Field(default=0, description="Stored files purged because they vanished from disk")
    chunks_failed: int = Field(default=0, description="Chunks dropped after an embedding failure")

    @property
    def progress_percent(self) -> float:
        """Share of discovered files already visited."""
        if self.total_files <= 0:
            return 100.0 if self.phase == SyncPhase.COMPLETE else 0.0
        return self.files_processed * 100.0 / self.total_files
