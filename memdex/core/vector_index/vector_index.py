"""In-memory vector index over chunk embeddings."""

import threading

import numpy as np
from loguru import logger

from ..enumeration import MemorySource
from ..memory_store import BaseMemoryStore
from ..utils.common_utils import batch_cosine_similarity


class VectorIndex:
    """Brute-force cosine index mapping chunk id to embedding.

    The index is a non-owning mirror of the store's embeddings for the current
    model. Mutations and snapshots are guarded by a lock, so a concurrent
    ``top_k`` sees either the state before a mutation or the state after it.
    """

    def __init__(self, store: BaseMemoryStore | None = None, model_key: str = ""):
        self.store = store
        self.model_key = model_key

        self._lock = threading.RLock()
        self._vectors: dict[int, np.ndarray] = {}
        self._sources: dict[int, MemorySource | None] = {}
        self._dimensions: int | None = None
        # (ids, sources, matrix) rebuilt lazily after a mutation
        self._snapshot: tuple[np.ndarray, np.ndarray, np.ndarray] | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._vectors)

    def __contains__(self, chunk_id: int) -> bool:
        with self._lock:
            return chunk_id in self._vectors

    @property
    def dimensions(self) -> int | None:
        return self._dimensions

    def add(self, chunk_id: int, vector: list[float], source: MemorySource | None = None) -> None:
        """Add or replace the vector for a chunk."""
        array = np.asarray(vector, dtype=np.float32)
        if array.ndim != 1 or array.shape[0] == 0:
            raise ValueError(f"Vector for chunk {chunk_id} must be a non-empty 1-D sequence")

        with self._lock:
            if self._dimensions is None:
                self._dimensions = int(array.shape[0])
            elif array.shape[0] != self._dimensions:
                raise ValueError(f"Vector for chunk {chunk_id} has {array.shape[0]} dims, index has {self._dimensions}")

            self._vectors[chunk_id] = array
            self._sources[chunk_id] = source
            self._snapshot = None

    def remove(self, chunk_id: int) -> bool:
        """Remove a chunk; returns False when it was not indexed."""
        with self._lock:
            if chunk_id not in self._vectors:
                return False
            del self._vectors[chunk_id]
            self._sources.pop(chunk_id, None)
            self._snapshot = None
            if not self._vectors:
                self._dimensions = None
            return True

    def remove_many(self, chunk_ids: list[int]) -> int:
        with self._lock:
            return sum(1 for chunk_id in chunk_ids if self.remove(chunk_id))

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._sources.clear()
            self._dimensions = None
            self._snapshot = None

    def _get_snapshot(self) -> tuple[np.ndarray, np.ndarray, np.ndarray] | None:
        with self._lock:
            if not self._vectors:
                return None
            if self._snapshot is None:
                ids = np.fromiter(self._vectors.keys(), dtype=np.int64, count=len(self._vectors))
                sources = np.array(
                    [s.value if s is not None else "" for s in (self._sources[i] for i in self._vectors)],
                    dtype=object,
                )
                matrix = np.stack(list(self._vectors.values()))
                self._snapshot = (ids, sources, matrix)
            return self._snapshot

    def top_k(
        self,
        query_vector: list[float],
        k: int,
        sources: list[MemorySource] | None = None,
    ) -> list[tuple[int, float]]:
        """Return up to ``k`` (chunk id, cosine similarity) pairs.

        Results are ordered by similarity descending, ties by chunk id ascending.

        Raises:
            ValueError: If the query dimension differs from the indexed vectors
        """
        if k <= 0:
            return []

        snapshot = self._get_snapshot()
        if snapshot is None:
            return []
        ids, source_values, matrix = snapshot

        query = np.asarray(query_vector, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != matrix.shape[1]:
            raise ValueError(f"Query has {query.shape[-1] if query.ndim else 0} dims, index has {matrix.shape[1]}")

        if sources is not None:
            mask = np.isin(source_values, [s.value for s in sources])
            ids, matrix = ids[mask], matrix[mask]
            if ids.size == 0:
                return []

        scores = batch_cosine_similarity(matrix, query)
        order = np.lexsort((ids, -scores))[:k]
        return [(int(ids[i]), float(scores[i])) for i in order]

    async def load_index(self) -> int:
        """Rebuild the index from the store's embeddings for ``model_key``.

        Returns:
            Number of vectors loaded
        """
        if self.store is None:
            raise RuntimeError("VectorIndex has no store to load from")

        rows = await self.store.list_embeddings(self.model_key)

        vectors: dict[int, np.ndarray] = {}
        sources: dict[int, MemorySource | None] = {}
        dimensions: int | None = None
        skipped = 0
        for chunk_id, embedding, source in rows:
            array = np.asarray(embedding, dtype=np.float32)
            if dimensions is None:
                dimensions = int(array.shape[0])
            if array.shape[0] != dimensions:
                skipped += 1
                continue
            vectors[chunk_id] = array
            sources[chunk_id] = source

        if skipped:
            logger.warning(f"Skipped {skipped} embeddings with mismatched dimensions while loading the vector index")

        with self._lock:
            self._vectors = vectors
            self._sources = sources
            self._dimensions = dimensions
            self._snapshot = None

        logger.info(f"Loaded {len(vectors)} vectors into the index ({self.model_key})")
        return len(vectors)
