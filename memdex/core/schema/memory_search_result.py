"""Memory search result schema."""

from datetime import datetime

from pydantic import BaseModel, Field

from ..enumeration import MemorySource


class MemorySearchResult(BaseModel):
    """Search result from memory index."""

    chunk_id: int = Field(..., description="Id of the matched chunk")
    path: str = Field(..., description="File path relative to its source root")
    start_line: int = Field(..., description="Starting line number of the match")
    end_line: int = Field(..., description="Ending line number of the match")
    score: float = Field(..., description="Fused relevance score in [0, 1]")
    snippet: str = Field(..., description="Text snippet from the matched content")
    source: MemorySource = Field(..., description="Source of the memory data")
    indexed_at: datetime | None = Field(default=None, description="When the chunk was written")
    vector_score: float = Field(default=0.0, description="Normalised vector component")
    text_score: float = Field(default=0.0, description="Normalised lexical component")

    @property
    def citation(self) -> str:
        """Path plus line range, e.g. ``notes.md#L3-L9``."""
        return f"{self.path}#L{self.start_line}-L{self.end_line}"
