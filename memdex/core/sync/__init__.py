"""sync"""

from .sync_engine import PARTIAL_HASH_PREFIX, ProgressCallback, SyncEngine

__all__ = [
    "PARTIAL_HASH_PREFIX",
    "ProgressCallback",
    "SyncEngine",
]
