"""Sync engine keeping the content store and vector index in step with disk."""

import asyncio
from pathlib import Path
from typing import Callable

from loguru import logger

from ..embedding import BaseEmbeddingModel
from ..enumeration import MemorySource, SyncPhase
from ..exceptions import EmbeddingProviderError, FileAccessError
from ..memory_store import BaseMemoryStore
from ..schema import ChunkingConfig, FileMetadata, MemoryChunk, SyncOptions, SyncProgress, TextChunk
from ..session import SessionStore
from ..utils.chunking_utils import chunk_text
from ..utils.common_utils import hash_bytes
from ..vector_index import VectorIndex

# Files whose chunks were not all embedded are stored under a marked hash so the next sync retries them
PARTIAL_HASH_PREFIX = "partial:"

ProgressCallback = Callable[[SyncProgress], None]


class SyncEngine:
    """Reconciles memory files and session transcripts into the index.

    One sync runs at a time. Each file is its own unit of work: its chunks are
    embedded first, then the file row and the whole chunk set are replaced in
    one store transaction, and only then is the vector index updated. There is
    no await between the commit and the index update, so cancelling a sync
    never leaves vectors for uncommitted chunks behind.
    """

    def __init__(
        self,
        store: BaseMemoryStore,
        vector_index: VectorIndex,
        embedding_model: BaseEmbeddingModel,
        session_store: SessionStore,
        memory_dir: str | Path,
        extensions: list[str],
        chunking: ChunkingConfig | None = None,
    ):
        self.store = store
        self.vector_index = vector_index
        self.embedding_model = embedding_model
        self.session_store = session_store
        self.memory_dir = Path(memory_dir)
        self.extensions = {ext.lower() if ext.startswith(".") else f".{ext.lower()}" for ext in extensions}
        self.chunking = chunking or ChunkingConfig()

        self._lock = asyncio.Lock()

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    # ============================================================================
    # Public API
    # ============================================================================

    async def sync(self, options: SyncOptions | None = None, progress: ProgressCallback | None = None) -> SyncProgress:
        """Synchronize the index with the memory and session directories.

        Waits for a running sync to finish first.

        Args:
            options: Which sources to sync and whether to force a reindex
            progress: Called with a snapshot after every state change

        Returns:
            The final progress state
        """
        options = options or SyncOptions()
        async with self._lock:
            return await self._run_sync(options, progress)

    async def index_file(
        self,
        abs_path: str | Path,
        source: MemorySource,
        force: bool = True,
        progress: ProgressCallback | None = None,
    ) -> SyncProgress:
        """Reindex a single file right away, e.g. after it was written by the caller."""
        abs_path = Path(abs_path)
        rel_path = self._relative_path(abs_path, source)

        async with self._lock:
            state = SyncProgress(phase=self._indexing_phase(source), total_files=1)
            await self._sync_file(abs_path, rel_path, source, force, state, progress)
            state.phase = SyncPhase.COMPLETE
            state.current_file = None
            self._report(state, progress)
            return state

    async def remove_file(self, rel_path: str, source: MemorySource) -> int:
        """Drop a file's rows and vectors, returning the number of chunks removed."""
        async with self._lock:
            removed_ids = await self.store.delete_file(rel_path, source)
            self.vector_index.remove_many(removed_ids)
            return len(removed_ids)

    async def reload_index(self) -> int:
        """Rebuild the vector index from the store for the current embedding model."""
        self.vector_index.model_key = self.embedding_model.model_key
        return await self.vector_index.load_index()

    async def clear(self) -> None:
        """Wipe every stored file, chunk, cached embedding and vector."""
        async with self._lock:
            await self.store.clear_all()
            self.vector_index.clear()
            logger.info("Cleared memory index")

    # ============================================================================
    # Sync Logic
    # ============================================================================

    async def _run_sync(self, options: SyncOptions, progress: ProgressCallback | None) -> SyncProgress:
        sources = options.sources or list(MemorySource)
        logger.info(f"memory sync started (reason={options.reason}, force={options.force}, sources={sources})")

        state = SyncProgress(phase=SyncPhase.SCANNING)
        self._report(state, progress)

        memory_files = self._list_memory_files() if MemorySource.MEMORY in sources else []
        session_files = self._list_session_files() if MemorySource.SESSIONS in sources else []
        state.total_files = len(memory_files) + len(session_files)
        self._report(state, progress)

        try:
            if MemorySource.MEMORY in sources:
                state.phase = SyncPhase.INDEXING_MEMORY
                self._report(state, progress)
                for abs_path, rel_path in memory_files:
                    await self._sync_file(abs_path, rel_path, MemorySource.MEMORY, options.force, state, progress)
                await self._remove_stale(MemorySource.MEMORY, {rel for _, rel in memory_files}, state)

            if MemorySource.SESSIONS in sources:
                state.phase = SyncPhase.INDEXING_SESSIONS
                self._report(state, progress)
                for abs_path, rel_path in session_files:
                    await self._sync_file(abs_path, rel_path, MemorySource.SESSIONS, options.force, state, progress)
                await self._remove_stale(MemorySource.SESSIONS, {rel for _, rel in session_files}, state)

            state.phase = SyncPhase.LOADING_VECTOR_INDEX
            state.current_file = None
            self._report(state, progress)
            await self.reload_index()
        except asyncio.CancelledError:
            logger.warning("memory sync cancelled, reloading vector index from committed state")
            await self.reload_index()
            raise

        state.phase = SyncPhase.COMPLETE
        self._report(state, progress)
        logger.info(
            f"memory sync complete: {state.files_processed}/{state.total_files} files, "
            f"{state.files_skipped} unchanged, {state.files_failed} failed, {state.files_removed} removed, "
            f"{state.chunks_created} chunks, {state.chunks_failed} chunks dropped",
        )
        return state

    async def _sync_file(
        self,
        abs_path: Path,
        rel_path: str,
        source: MemorySource,
        force: bool,
        state: SyncProgress,
        progress: ProgressCallback | None,
    ) -> None:
        """Index one file as a single unit of work."""
        state.current_file = rel_path
        self._report(state, progress)

        try:
            raw = abs_path.read_bytes()
            mtime_ms = abs_path.stat().st_mtime * 1000
        except OSError as e:
            logger.warning(f"Cannot read {abs_path}: {e}")
            self._finish_file(state, progress, failed=True)
            return

        file_hash = hash_bytes(raw)
        existing = await self.store.get_file(rel_path, source)
        if existing and existing.hash == file_hash and not force:
            self._finish_file(state, progress, skipped=True)
            return

        try:
            text = self._render(raw, abs_path, source)
        except FileAccessError as e:
            logger.warning(f"Skipping {rel_path}: {e}")
            self._finish_file(state, progress, failed=True)
            return

        chunks, failed = await self._embed_chunks(text, rel_path, source, state)
        if failed:
            file_hash = PARTIAL_HASH_PREFIX + file_hash

        file_meta = FileMetadata(path=rel_path, source=source, hash=file_hash, mtime_ms=mtime_ms, size=len(raw))
        old_ids, inserted = await self.store.replace_file(file_meta, chunks)

        # Committed; mirror the swap in the vector index before yielding
        self.vector_index.remove_many(old_ids)
        for chunk in inserted:
            if chunk.embedding:
                self.vector_index.add(chunk.id, chunk.embedding, source)

        state.chunks_created += len(inserted)
        logger.debug(f"Indexed {source.value}/{rel_path}: {len(inserted)} chunks, replaced {len(old_ids)}")
        self._finish_file(state, progress)

    async def _embed_chunks(
        self,
        text: str,
        rel_path: str,
        source: MemorySource,
        state: SyncProgress,
    ) -> tuple[list[MemoryChunk], int]:
        """Chunk and embed a document, dropping chunks the provider fails on."""
        text_chunks = chunk_text(
            text,
            rel_path,
            max_tokens=self.chunking.max_tokens,
            overlap_tokens=self.chunking.overlap_tokens,
            min_tokens=self.chunking.min_tokens,
            markdown_aware=self.chunking.markdown_aware,
        )

        chunks: list[MemoryChunk] = []
        failed = 0
        for text_chunk in text_chunks:
            try:
                embedding = await self._embed(text_chunk, state)
            except EmbeddingProviderError as e:
                failed += 1
                state.chunks_failed += 1
                logger.warning(f"Dropping chunk {rel_path}:{text_chunk.start_line}-{text_chunk.end_line}: {e}")
                continue

            chunks.append(
                MemoryChunk(
                    path=rel_path,
                    source=source,
                    start_line=text_chunk.start_line,
                    end_line=text_chunk.end_line,
                    text=text_chunk.text,
                    hash=text_chunk.hash,
                    model=self.embedding_model.model_key,
                    embedding=embedding,
                ),
            )
        return chunks, failed

    async def _embed(self, text_chunk: TextChunk, state: SyncProgress) -> list[float]:
        provider = self.embedding_model.provider_name
        model_key = self.embedding_model.model_key

        cached = await self.store.get_cached_embedding(provider, model_key, text_chunk.hash)
        if cached is not None:
            state.embeddings_cached += 1
            return cached

        embedding = await self.embedding_model.get_embedding(text_chunk.text)
        state.embeddings_generated += 1
        # Dimensions may only be known once the provider has answered
        await self.store.put_cached_embedding(provider, self.embedding_model.model_key, text_chunk.hash, embedding)
        return embedding

    async def _remove_stale(self, source: MemorySource, active_paths: set[str], state: SyncProgress) -> None:
        """Purge stored files that no longer exist on disk."""
        for file_meta in await self.store.list_files(source):
            if file_meta.path in active_paths:
                continue
            removed_ids = await self.store.delete_file(file_meta.path, source)
            self.vector_index.remove_many(removed_ids)
            state.files_removed += 1
            logger.info(f"Removed stale {source.value} file {file_meta.path} ({len(removed_ids)} chunks)")

    @staticmethod
    def _render(raw: bytes, abs_path: Path, source: MemorySource) -> str:
        """Turn raw file bytes into the text that gets chunked."""
        if source == MemorySource.SESSIONS:
            return SessionStore.read_file(abs_path).to_plain_text()

        try:
            return raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise FileAccessError(str(abs_path), f"not valid UTF-8: {e}") from e

    # ============================================================================
    # File Listing
    # ============================================================================

    def is_indexable(self, path: str | Path) -> bool:
        """Whether a memory file path passes the extension allow-list."""
        path = Path(path)
        return path.suffix.lower() in self.extensions and not path.name.startswith(".")

    def _list_memory_files(self) -> list[tuple[Path, str]]:
        if not self.memory_dir.is_dir():
            return []

        files = []
        for abs_path in sorted(self.memory_dir.rglob("*")):
            if abs_path.is_file() and self.is_indexable(abs_path):
                files.append((abs_path, abs_path.relative_to(self.memory_dir).as_posix()))
        return files

    def _list_session_files(self) -> list[tuple[Path, str]]:
        return [(abs_path, abs_path.name) for abs_path in self.session_store.list_paths()]

    def _relative_path(self, abs_path: Path, source: MemorySource) -> str:
        root = self.session_store.sessions_dir if source == MemorySource.SESSIONS else self.memory_dir
        try:
            return abs_path.resolve().relative_to(root.resolve()).as_posix()
        except ValueError as e:
            raise ValueError(f"{abs_path} is outside the {source.value} directory {root}") from e

    # ============================================================================
    # Progress
    # ============================================================================

    @staticmethod
    def _indexing_phase(source: MemorySource) -> SyncPhase:
        return SyncPhase.INDEXING_SESSIONS if source == MemorySource.SESSIONS else SyncPhase.INDEXING_MEMORY

    @staticmethod
    def _report(state: SyncProgress, progress: ProgressCallback | None) -> None:
        if progress:
            progress(state.model_copy())

    def _finish_file(
        self,
        state: SyncProgress,
        progress: ProgressCallback | None,
        skipped: bool = False,
        failed: bool = False,
    ) -> None:
        state.files_processed += 1
        if skipped:
            state.files_skipped += 1
        if failed:
            state.files_failed += 1
        self._report(state, progress)
