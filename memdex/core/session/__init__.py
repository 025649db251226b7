"""session"""

from .session_store import SessionStore, safe_session_key

__all__ = [
    "SessionStore",
    "safe_session_key",
]
