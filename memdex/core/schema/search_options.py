"""Search options schema."""

from pydantic import BaseModel, Field

from ..enumeration import MemorySource


class MemorySearchOptions(BaseModel):
    """Per-query search options.

    Values are checked by the search component, which raises ``InvalidQueryError``
    instead of a pydantic validation error so callers see one failure type.
    """

    max_results: int = Field(default=10, description="Maximum number of results to return")
    min_score: float = Field(default=0.35, description="Minimum fused score for a result")
    vector_weight: float = Field(default=0.7, description="Weight of the vector similarity score")
    text_weight: float = Field(default=0.3, description="Weight of the lexical score")
    include_sessions: bool = Field(default=True, description="Search session transcripts")
    include_memory_files: bool = Field(default=True, description="Search memory files")

    @property
    def sources(self) -> list[MemorySource]:
        """Sources selected by the include flags."""
        sources = []
        if self.include_memory_files:
            sources.append(MemorySource.MEMORY)
        if self.include_sessions:
            sources.append(MemorySource.SESSIONS)
        return sources
