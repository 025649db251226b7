"""search"""

from .hybrid_search import HybridSearch, build_snippet, normalize_text_scores

__all__ = [
    "HybridSearch",
    "build_snippet",
    "normalize_text_scores",
]
