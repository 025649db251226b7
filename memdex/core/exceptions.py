"""Error types raised by memdex components."""


class MemdexError(Exception):
    """Base class for all memdex errors."""


class EmbeddingProviderError(MemdexError):
    """The embedding provider failed or returned an unusable vector.

    Raised per chunk during a sync, where it is logged and the chunk is dropped,
    and per query during a search, where it propagates to the caller.
    """

    def __init__(self, message: str, provider: str = "", model: str = ""):
        super().__init__(message)
        self.provider = provider
        self.model = model


class FileAccessError(MemdexError):
    """A file could not be read or decoded."""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class MemoryNotInitializedError(MemdexError, RuntimeError):
    """An operation was invoked before ``initialize()`` completed."""


class InvalidQueryError(MemdexError, ValueError):
    """Search parameters were rejected before any provider or store call."""


class MemoryStoreError(MemdexError):
    """The content store failed to read or write."""
