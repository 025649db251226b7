"""Core"""

from . import embedding
from . import enumeration
from . import exceptions
from . import file_watcher
from . import memory_store
from . import schema
from . import search
from . import session
from . import sync
from . import utils
from . import vector_index

__all__ = [
    "embedding",
    "enumeration",
    "exceptions",
    "file_watcher",
    "memory_store",
    "schema",
    "search",
    "session",
    "sync",
    "utils",
    "vector_index",
]
