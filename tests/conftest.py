"""Shared fixtures: a deterministic embedding model and a temporary engine layout."""

import re
from pathlib import Path

import pytest
import pytest_asyncio

from memdex.core.embedding import BaseEmbeddingModel
from memdex.core.memory_store import SqliteMemoryStore
from memdex.core.schema import ChunkingConfig
from memdex.core.session import SessionStore
from memdex.core.sync import SyncEngine
from memdex.core.vector_index import VectorIndex

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeEmbeddingModel(BaseEmbeddingModel):
    """Bag-of-words embeddings over a growing vocabulary.

    Every new word gets the next free dimension, so texts share a dimension
    only when they share a word. Any text containing ``fail_on`` makes the
    call fail.
    """

    default_model_name = "fake-bow"

    def __init__(self, dimensions: int = 256, fail_on: str | None = None, **kwargs):
        kwargs.setdefault("retry_delay", 0.0)
        kwargs.setdefault("max_retries", 1)
        super().__init__(dimensions=dimensions, **kwargs)
        self.fail_on = fail_on
        self.calls = 0
        self._vocabulary: dict[str, int] = {}

    @property
    def provider_name(self) -> str:
        return "fake"

    def _bucket(self, word: str) -> int:
        if word not in self._vocabulary:
            self._vocabulary[word] = len(self._vocabulary) % self.dimensions
        return self._vocabulary[word]

    async def _get_embeddings(self, input_text: list[str], **kwargs) -> list[list[float]]:
        self.calls += 1
        results = []
        for text in input_text:
            if self.fail_on and self.fail_on in text:
                raise RuntimeError(f"provider refused text containing {self.fail_on!r}")
            vector = [0.0] * self.dimensions
            for word in _WORD_RE.findall(text.lower()):
                vector[self._bucket(word)] += 1.0
            results.append(vector)
        return results


@pytest.fixture
def embedding_model() -> FakeEmbeddingModel:
    return FakeEmbeddingModel()


@pytest.fixture
def memory_dir(tmp_path: Path) -> Path:
    path = tmp_path / "memory"
    path.mkdir()
    return path


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    path = tmp_path / "sessions"
    path.mkdir()
    return path


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    memory_store = SqliteMemoryStore(store_name="test", db_path=tmp_path / "memory.db")
    await memory_store.start()
    yield memory_store
    await memory_store.close()


@pytest.fixture
def vector_index(store, embedding_model) -> VectorIndex:
    return VectorIndex(store=store, model_key=embedding_model.model_key)


@pytest.fixture
def sync_engine(store, vector_index, embedding_model, memory_dir, sessions_dir) -> SyncEngine:
    return SyncEngine(
        store=store,
        vector_index=vector_index,
        embedding_model=embedding_model,
        session_store=SessionStore(sessions_dir),
        memory_dir=memory_dir,
        extensions=[".md", ".txt"],
        chunking=ChunkingConfig(max_tokens=64, overlap_tokens=0, min_tokens=0),
    )


@pytest.fixture
def embedding_model_factory():
    return FakeEmbeddingModel
