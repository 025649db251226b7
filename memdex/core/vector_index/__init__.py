"""vector_index"""

from .vector_index import VectorIndex

__all__ = [
    "VectorIndex",
]
