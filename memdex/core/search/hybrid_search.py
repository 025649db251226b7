"""Hybrid search combining vector similarity with lexical matching."""

import math
from datetime import datetime

from loguru import logger

from ..embedding import BaseEmbeddingModel
from ..exceptions import InvalidQueryError
from ..memory_store import BaseMemoryStore
from ..schema import MemorySearchOptions, MemorySearchResult
from ..vector_index import VectorIndex


def build_snippet(text: str, max_chars: int) -> str:
    """Truncate text for display, preferring a word boundary near the limit."""
    text = text.strip()
    if len(text) <= max_chars:
        return text

    cut = text[:max_chars]
    boundary = max(cut.rfind(" "), cut.rfind("\n"))
    if boundary > max_chars * 0.8:
        cut = cut[:boundary]
    return cut.rstrip() + "..."


def normalize_text_scores(raw: list[tuple[int, float]]) -> dict[int, float]:
    """Scale lexical scores into [0, 1] by dividing by the best score."""
    if not raw:
        return {}

    best = max(score for _, score in raw)
    if best <= 0:
        # No usable spread; every lexical hit counts as a full match
        return {chunk_id: 1.0 for chunk_id, _ in raw}
    return {chunk_id: min(1.0, max(0.0, score / best)) for chunk_id, score in raw}


class HybridSearch:
    """Fuses Vector Index and lexical store results into one ranked list.

    ``final = vector_weight * v + text_weight * t`` where ``v`` is the cosine
    similarity clamped to [0, 1] and ``t`` the max-normalised lexical score; a
    chunk missing from one list contributes 0 for that part. Ties break on
    chunk id ascending, so the ranking is deterministic.
    """

    def __init__(
        self,
        store: BaseMemoryStore,
        vector_index: VectorIndex,
        embedding_model: BaseEmbeddingModel,
        candidate_multiplier: int = 3,
        snippet_max_chars: int = 500,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedding_model = embedding_model
        self.candidate_multiplier = max(1, candidate_multiplier)
        self.snippet_max_chars = snippet_max_chars

    @staticmethod
    def validate(query: str, options: MemorySearchOptions) -> str:
        """Check a query and its options, returning the stripped query.

        Raises:
            InvalidQueryError: On any malformed parameter
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("Query must be a non-empty string")
        if options.max_results < 1:
            raise InvalidQueryError(f"max_results must be at least 1, got {options.max_results}")
        if not 0.0 <= options.min_score <= 1.0:
            raise InvalidQueryError(f"min_score must be within [0, 1], got {options.min_score}")
        for name in ("vector_weight", "text_weight"):
            weight = getattr(options, name)
            if not math.isfinite(weight) or weight < 0:
                raise InvalidQueryError(f"{name} must be a non-negative number, got {weight}")
        if options.vector_weight == 0 and options.text_weight == 0:
            raise InvalidQueryError("At least one of vector_weight or text_weight must be positive")
        if not options.sources:
            raise InvalidQueryError("At least one of include_sessions or include_memory_files must be set")
        return query.strip()

    async def search(self, query: str, options: MemorySearchOptions | None = None) -> list[MemorySearchResult]:
        """Search indexed memory with hybrid vector + keyword search.

        Args:
            query: Search query text
            options: Per-query options, defaults when omitted

        Returns:
            Results sorted by fused score, at most ``max_results``, none below ``min_score``
        """
        options = options or MemorySearchOptions()
        cleaned = self.validate(query, options)
        sources = options.sources
        candidates = options.max_results * self.candidate_multiplier

        vector_scores: dict[int, float] = {}
        if options.vector_weight > 0 and len(self.vector_index):
            query_vector = await self.embedding_model.get_embedding(cleaned)
            for chunk_id, similarity in self.vector_index.top_k(query_vector, candidates, sources):
                vector_scores[chunk_id] = min(1.0, max(0.0, similarity))

        text_scores: dict[int, float] = {}
        if options.text_weight > 0:
            raw = await self.store.text_search(cleaned, candidates, sources)
            text_scores = normalize_text_scores(raw)

        logger.debug(f"search '{cleaned}': {len(vector_scores)} vector / {len(text_scores)} text candidates")

        fused: dict[int, tuple[float, float, float]] = {}
        for chunk_id in vector_scores.keys() | text_scores.keys():
            v = vector_scores.get(chunk_id, 0.0)
            t = text_scores.get(chunk_id, 0.0)
            fused[chunk_id] = (options.vector_weight * v + options.text_weight * t, v, t)

        ranked = sorted(fused.items(), key=lambda item: (-item[1][0], item[0]))
        ranked = [item for item in ranked if item[1][0] >= options.min_score]
        if not ranked:
            return []

        # Chunks replaced by a concurrent sync are simply absent here
        chunks = await self.store.get_chunks([chunk_id for chunk_id, _ in ranked])

        results: list[MemorySearchResult] = []
        for chunk_id, (score, v, t) in ranked:
            chunk = chunks.get(chunk_id)
            if chunk is None:
                continue
            results.append(
                MemorySearchResult(
                    chunk_id=chunk_id,
                    path=chunk.path,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    score=min(1.0, score),
                    snippet=build_snippet(chunk.text, self.snippet_max_chars),
                    source=chunk.source,
                    indexed_at=datetime.fromtimestamp(chunk.updated_at / 1000) if chunk.updated_at else None,
                    vector_score=v,
                    text_score=t,
                ),
            )
            if len(results) >= options.max_results:
                break

        return results
