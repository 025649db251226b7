"""Memory chunk schemas."""

from pydantic import BaseModel, Field

from ..enumeration import MemorySource


class TextChunk(BaseModel):
    """A token-bounded slice of a document produced by the chunker."""

    text: str = Field(..., description="Text content of the chunk")
    start_line: int = Field(..., description="First line (1-based, inclusive)")
    end_line: int = Field(..., description="Last line (1-based, inclusive)")
    token_count: int = Field(default=0, description="Estimated token count")
    hash: str = Field(default="", description="Digest of the chunk text")


class MemoryChunk(BaseModel):
    """A stored chunk of memory content with metadata."""

    id: int | None = Field(default=None, description="Store-assigned chunk id, stable once created")
    file_id: int | None = Field(default=None, description="Owning file id")
    path: str = Field(..., description="File path relative to its source root")
    source: MemorySource = Field(..., description="Source of the memory data")
    start_line: int = Field(..., description="Starting line number in the source file")
    end_line: int = Field(..., description="Ending line number in the source file")
    text: str = Field(..., description="Text content of the chunk")
    hash: str = Field(..., description="Hash of the chunk content")
    model: str = Field(default="", description="Embedding model key that produced the vector")
    embedding: list[float] | None = Field(default=None, description="Vector embedding of the chunk")
    updated_at: int | None = Field(default=None, description="Write time in epoch milliseconds")
