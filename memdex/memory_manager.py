"""High-level entry point wiring the memory index components together."""

from datetime import datetime
from pathlib import Path

from loguru import logger
from watchfiles import Change

from .core.embedding import BaseEmbeddingModel, create_embedding_model
from .core.enumeration import MemorySource
from .core.exceptions import FileAccessError, MemoryNotInitializedError
from .core.file_watcher import SyncWatcher
from .core.memory_store import BaseMemoryStore, SqliteMemoryStore
from .core.schema import (
    MemoryConfig,
    MemoryIndexMeta,
    MemorySearchOptions,
    MemorySearchResult,
    MemoryStatus,
    SessionSummary,
    SessionTranscript,
    SyncOptions,
    SyncProgress,
)
from .core.search import HybridSearch
from .core.session import SessionStore
from .core.session.session_store import SESSION_SUFFIX
from .core.sync import ProgressCallback, SyncEngine
from .core.utils import init_logger
from .core.vector_index import VectorIndex


class MemoryManager:
    """Facade over the content store, vector index, sync engine and watcher.

    Every operation except the session file helpers requires ``initialize()``
    first and raises ``MemoryNotInitializedError`` otherwise. The status is an
    immutable snapshot replaced at the end of ``initialize()`` and each sync.
    """

    def __init__(
        self,
        config: MemoryConfig | None = None,
        embedding_model: BaseEmbeddingModel | None = None,
        store: BaseMemoryStore | None = None,
        **kwargs,
    ):
        """
        Args:
            config: Engine configuration; built from ``kwargs`` when omitted
            embedding_model: Embedding backend; built from ``config.embedding`` when omitted
            store: Content store; a SQLite store under ``config.data_dir`` when omitted
        """
        self.config: MemoryConfig = config or MemoryConfig(**kwargs)
        self.embedding_model: BaseEmbeddingModel = embedding_model or create_embedding_model(self.config.embedding)
        self.store: BaseMemoryStore = store or SqliteMemoryStore(
            store_name=self.config.store_name,
            db_path=self.config.db_path,
        )

        self.vector_index = VectorIndex(store=self.store, model_key=self.embedding_model.model_key)
        self.session_store = SessionStore(self.config.sessions_dir)
        self.sync_engine = SyncEngine(
            store=self.store,
            vector_index=self.vector_index,
            embedding_model=self.embedding_model,
            session_store=self.session_store,
            memory_dir=self.config.memory_dir,
            extensions=self.config.extensions,
            chunking=self.config.chunking,
        )
        self.hybrid_search = HybridSearch(
            store=self.store,
            vector_index=self.vector_index,
            embedding_model=self.embedding_model,
            candidate_multiplier=self.config.search.candidate_multiplier,
            snippet_max_chars=self.config.search.snippet_max_chars,
        )
        self.watcher: SyncWatcher | None = None

        self._status = MemoryStatus(
            embedding_provider=self.embedding_model.provider_name,
            embedding_model=self.embedding_model.model_name,
        )
        self._initialized: bool = False
        self._needs_reindex: bool = False
        self._change_seq: int = 0

    @classmethod
    async def create(cls, *args, **kwargs) -> "MemoryManager":
        """Create and initialize a MemoryManager instance asynchronously."""
        instance = cls(*args, **kwargs)
        await instance.initialize()
        return instance

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def memory_dir(self) -> Path:
        return self.config.memory_dir

    @property
    def sessions_dir(self) -> Path:
        return self.config.sessions_dir

    def _ensure_initialized(self):
        if not self._initialized:
            raise MemoryNotInitializedError("Memory manager not initialized. Call initialize() first.")

    # ============================================================================
    # Lifecycle
    # ============================================================================

    async def initialize(self) -> "MemoryManager":
        """Create the directories, open the store and load the vector index."""
        if self._initialized:
            logger.warning("MemoryManager has already been initialized.")
            return self

        if self.config.init_logger:
            init_logger(
                log_dir=self.config.log_dir,
                level=self.config.log_level,
                log_to_console=self.config.log_to_console,
            )
        logger.info(f"Init memdex with config: {self.config.model_dump_json(exclude={'embedding': {'api_key'}})}")

        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        await self.store.start()

        await self._check_index_meta()
        await self.sync_engine.reload_index()

        self._initialized = True
        await self._refresh_status(synced_seq=self._change_seq)

        if self.config.watch.enabled:
            await self.start_watching()

        logger.info("Memory system initialized")
        return self

    async def close(self) -> bool:
        """Stop watching and release the store and embedding backend."""
        if not self._initialized:
            logger.warning("MemoryManager is not initialized")
            return True

        await self.stop_watching()
        await self.embedding_model.close()
        await self.store.close()
        self.vector_index.clear()

        self._initialized = False
        logger.info("Memory system closed")
        return False

    async def __aenter__(self):
        """Async context manager entry."""
        return await self.initialize()

    async def __aexit__(self, exc_type=None, exc_val=None, exc_tb=None):
        """Async context manager exit."""
        return await self.close()

    # ============================================================================
    # Index identity
    # ============================================================================

    def _current_meta(self) -> MemoryIndexMeta:
        return MemoryIndexMeta(
            provider=self.embedding_model.provider_name,
            model=self.embedding_model.model_name,
            chunk_tokens=self.config.chunking.max_tokens,
            chunk_overlap=self.config.chunking.overlap_tokens,
            vector_dims=self.embedding_model.dimensions,
        )

    @staticmethod
    def _meta_matches(stored: MemoryIndexMeta, current: MemoryIndexMeta) -> bool:
        if (stored.provider, stored.model, stored.chunk_tokens, stored.chunk_overlap) != (
            current.provider,
            current.model,
            current.chunk_tokens,
            current.chunk_overlap,
        ):
            return False
        # Unknown dimensions are learned from the first embedding
        if stored.vector_dims is None or current.vector_dims is None:
            return True
        return stored.vector_dims == current.vector_dims

    async def _check_index_meta(self):
        """Flag a full reindex when the index was built with another model or chunking."""
        stored = await self.store.get_index_meta()
        current = self._current_meta()

        if stored is None:
            stats = await self.store.get_stats()
            if stats["total_files"]:
                logger.warning("Index has no recorded configuration, the next sync reindexes everything")
                self._needs_reindex = True
            else:
                await self.store.set_index_meta(current)
            return

        if not self._meta_matches(stored, current):
            logger.warning(
                f"Index was built with {stored.provider}/{stored.model} "
                f"(chunk {stored.chunk_tokens}/{stored.chunk_overlap}), "
                f"now {current.provider}/{current.model} (chunk {current.chunk_tokens}/{current.chunk_overlap}); "
                "the next sync reindexes everything",
            )
            self._needs_reindex = True
            return

        if self.embedding_model.dimensions is None:
            self.embedding_model.dimensions = stored.vector_dims

    # ============================================================================
    # Status
    # ============================================================================

    def get_status(self) -> MemoryStatus:
        """Get the latest status snapshot."""
        self._ensure_initialized()
        return self._status

    def mark_dirty(self, path: str | None = None):
        """Record that the index no longer reflects disk."""
        self._change_seq += 1
        if not self._status.is_dirty:
            self._status = self._status.model_copy(update={"is_dirty": True})
        if path:
            logger.debug(f"Change pending: {path}")

    async def _refresh_status(self, synced_at: datetime | None = None, synced_seq: int | None = None):
        stats = await self.store.get_stats()
        if synced_seq is None:
            is_dirty = self._status.is_dirty
        else:
            # Changes noticed while the sync ran are still pending
            is_dirty = self._needs_reindex or self._change_seq != synced_seq

        self._status = MemoryStatus(
            total_files=stats["total_files"],
            total_chunks=stats["total_chunks"],
            is_dirty=is_dirty,
            last_sync_at=synced_at or self._status.last_sync_at,
            embedding_provider=self.embedding_model.provider_name,
            embedding_model=self.embedding_model.model_name,
            cached_embeddings=stats["cached_embeddings"],
            database_size_bytes=stats["database_size_bytes"],
            memory_files=stats["memory_files"],
            session_files=stats["session_files"],
        )

    # ============================================================================
    # Search & sync
    # ============================================================================

    def default_search_options(self) -> MemorySearchOptions:
        """Search options seeded from the configured defaults."""
        search_config = self.config.search
        return MemorySearchOptions(
            max_results=search_config.max_results,
            min_score=search_config.min_score,
            vector_weight=search_config.vector_weight,
            text_weight=search_config.text_weight,
        )

    async def search(self, query: str, options: MemorySearchOptions | None = None) -> list[MemorySearchResult]:
        """Search memory files and session transcripts.

        Args:
            query: Free-text query
            options: Per-query options; the configured defaults when omitted

        Returns:
            Ranked results, best first
        """
        self._ensure_initialized()
        options = options or self.default_search_options()

        logger.debug(f"Searching memory for: {query}")
        results = await self.hybrid_search.search(query, options)
        logger.debug(f"Found {len(results)} results")
        return results

    async def sync(self, options: SyncOptions | None = None, progress: ProgressCallback | None = None) -> SyncProgress:
        """Bring the index in line with the memory and session directories."""
        self._ensure_initialized()
        options = options or SyncOptions(reason="manual")

        full_sync = not options.sources
        if self._needs_reindex and not options.force:
            options = options.model_copy(update={"force": True})

        synced_seq = self._change_seq
        result = await self.sync_engine.sync(options, progress)

        if full_sync:
            # Also records dimensions learned during this sync
            await self.store.set_index_meta(self._current_meta())
            self._needs_reindex = False
        await self._refresh_status(synced_at=datetime.now(), synced_seq=synced_seq)
        return result

    async def warm_session(self, session_key: str | None = None):
        """Prepare the index for a session.

        Reloads the vector index and, for a known session, makes sure its
        transcript is indexed.
        """
        self._ensure_initialized()
        logger.debug(f"Warming session: {session_key or 'all'}")

        if session_key:
            session_path = self.session_store.path_for(session_key)
            if session_path.exists():
                await self.sync_engine.index_file(session_path, MemorySource.SESSIONS, force=False)
                await self._refresh_status()
                return
        await self.sync_engine.reload_index()

    # ============================================================================
    # Direct ingestion
    # ============================================================================

    def _resolve_memory_path(self, path: str | None) -> Path:
        if path is None:
            path = f"memory_{datetime.now():%Y%m%d_%H%M%S_%f}.md"

        memory_root = self.memory_dir.resolve()
        full_path = (memory_root / path).resolve()
        if not full_path.is_relative_to(memory_root):
            raise ValueError(f"Memory path {path!r} escapes the memory directory")
        if not self.sync_engine.is_indexable(full_path):
            raise ValueError(f"Memory path {path!r} does not have an indexable extension")
        return full_path

    async def add_memory(
        self,
        text: str,
        source: MemorySource = MemorySource.MEMORY,
        path: str | None = None,
    ) -> Path:
        """Store a piece of text and index it right away.

        Memory text is written to ``path`` under the memory directory, a new
        timestamped markdown file by default. Session text is appended as a
        system entry to the transcript keyed by ``path``.

        Returns:
            The file that now holds the text
        """
        self._ensure_initialized()
        if not text or not text.strip():
            raise ValueError("Memory text must be non-empty")

        source = MemorySource(source)
        if source == MemorySource.SESSIONS:
            session_key = path or f"notes_{datetime.now():%Y%m%d}"
            transcript = await self.session_store.load(session_key)
            if transcript is None:
                transcript = SessionTranscript(session_key=session_key, title="Notes")
            transcript.add_system_message(text)
            return await self.save_session(transcript)

        full_path = self._resolve_memory_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            full_path.write_text(text, encoding="utf-8")
        except OSError as e:
            raise FileAccessError(str(full_path), f"failed to write memory: {e}") from e

        await self.sync_engine.index_file(full_path, MemorySource.MEMORY, force=True)
        await self._refresh_status()
        logger.info(f"Added memory: {full_path.relative_to(self.memory_dir.resolve()).as_posix()}")
        return full_path

    # ============================================================================
    # Sessions
    # ============================================================================

    async def save_session(self, transcript: SessionTranscript) -> Path:
        """Persist a transcript and, once initialized, reindex it."""
        session_path = await self.session_store.save(transcript)
        if self._initialized:
            await self.sync_engine.index_file(session_path, MemorySource.SESSIONS, force=True)
            await self._refresh_status()
        return session_path

    async def load_session(self, session_key: str) -> SessionTranscript | None:
        return await self.session_store.load(session_key)

    async def list_sessions(self) -> list[SessionSummary]:
        return await self.session_store.list_summaries()

    async def delete_session(self, session_key: str) -> bool:
        """Delete a transcript file and its indexed chunks."""
        session_path = self.session_store.path_for(session_key)
        deleted = await self.session_store.delete(session_key)
        if self._initialized:
            await self.sync_engine.remove_file(session_path.name, MemorySource.SESSIONS)
            await self._refresh_status()
        return deleted

    async def export_session(self, session_key: str, output_path: str | Path) -> Path:
        return await self.session_store.export(session_key, output_path)

    # ============================================================================
    # Maintenance
    # ============================================================================

    async def clear(self):
        """Wipe every indexed file, chunk and cached embedding; files on disk are kept."""
        self._ensure_initialized()
        logger.warning("Clearing all memory data...")

        await self.sync_engine.clear()
        self.embedding_model.clear_cache()
        await self.store.set_index_meta(self._current_meta())
        self._needs_reindex = False
        await self._refresh_status()
        # Files on disk are no longer indexed
        self.mark_dirty()

        logger.info("All memory data cleared")

    # ============================================================================
    # Watching
    # ============================================================================

    def _watch_filter(self, _change: Change, path: str) -> bool:
        file_path = Path(path)
        if file_path.parent.resolve() == self.sessions_dir.resolve():
            return file_path.suffix == SESSION_SUFFIX
        return self.sync_engine.is_indexable(file_path)

    async def _watch_sync(self, paths: set[str]) -> SyncProgress:
        reason = f"watch ({len(paths)} changed)" if paths else "manual"
        return await self.sync(SyncOptions(reason=reason))

    async def start_watching(self):
        """Observe the memory and session directories and sync after each quiet period."""
        self._ensure_initialized()
        if self.watcher is not None and self.watcher.is_running():
            return

        self.watcher = SyncWatcher(
            watch_paths=[self.memory_dir.resolve(), self.sessions_dir.resolve()],
            sync_callback=self._watch_sync,
            debounce_ms=self.config.watch.debounce_ms,
            watch_filter=self._watch_filter,
            on_change=self.mark_dirty,
        )
        await self.watcher.start()

    async def stop_watching(self):
        if self.watcher is not None:
            await self.watcher.close()
            self.watcher = None

    async def trigger_sync(self) -> SyncProgress:
        """Sync now, bypassing the watcher's debounce."""
        self._ensure_initialized()
        if self.watcher is not None and self.watcher.is_running():
            return await self.watcher.trigger_sync()
        return await self.sync(SyncOptions(reason="manual"))
