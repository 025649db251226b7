"""file_watcher"""

from .sync_watcher import SyncWatcher

__all__ = [
    "SyncWatcher",
]
