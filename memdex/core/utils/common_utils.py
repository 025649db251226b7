"""Common helpers for hashing and vector math."""

import hashlib
import struct

import numpy as np


def hash_bytes(data: bytes) -> str:
    """Generate a 64-bit BLAKE2b digest of raw bytes.

    Args:
        data: Input bytes to hash

    Returns:
        16-character hexadecimal digest
    """
    return hashlib.blake2b(data, digest_size=8).hexdigest()


def hash_text(text: str) -> str:
    """Generate a 64-bit BLAKE2b digest of UTF-8 encoded text."""
    return hash_bytes(text.encode("utf-8"))


def to_float32(vector) -> list[float]:
    """Round a vector to float32 precision so it survives BLOB storage unchanged."""
    return np.asarray(vector, dtype=np.float32).tolist()


def vector_to_blob(embedding: list[float]) -> bytes:
    """Convert vector to a little-endian float32 blob."""
    return struct.pack(f"<{len(embedding)}f", *embedding)


def blob_to_vector(blob: bytes) -> list[float]:
    """Convert a little-endian float32 blob back to a vector."""
    if len(blob) % 4:
        raise ValueError(f"Embedding blob length {len(blob)} is not a multiple of 4")
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def cosine_similarity(vec1: list[float], vec2: list[float]) -> float:
    """Calculate the cosine similarity between two numeric vectors."""
    if len(vec1) != len(vec2):
        raise ValueError(f"Vectors must have same length: {len(vec1)} != {len(vec2)}")

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    magnitude1 = sum(a * a for a in vec1) ** 0.5
    magnitude2 = sum(b * b for b in vec2) ** 0.5

    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)


def batch_cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Calculate cosine similarity between each row of a matrix and one query vector.

    Args:
        matrix: Matrix of shape (n, emb_size)
        query: Vector of shape (emb_size,)

    Returns:
        Array of shape (n,); rows or queries with zero norm score 0.0

    Raises:
        ValueError: If embedding dimensions don't match
    """
    if matrix.shape[1] != query.shape[0]:
        raise ValueError(f"Embedding dimensions must match: {matrix.shape[1]} != {query.shape[0]}")

    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = np.linalg.norm(query)
    denom = row_norms * query_norm

    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / denom, 0.0)
    return scores
