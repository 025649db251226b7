"""Sync phase types."""

from enum import Enum


class SyncPhase(str, Enum):
    """Phase reported by a running sync."""

    SCANNING = "scanning"

    INDEXING_MEMORY = "indexing_memory"

    INDEXING_SESSIONS = "indexing_sessions"

    LOADING_VECTOR_INDEX = "loading_vector_index"

    COMPLETE = "complete"
