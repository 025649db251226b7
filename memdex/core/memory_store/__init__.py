"""memory_store"""

from .base_memory_store import BaseMemoryStore
from .sqlite_memory_store import SqliteMemoryStore

__all__ = [
    "BaseMemoryStore",
    "SqliteMemoryStore",
]
