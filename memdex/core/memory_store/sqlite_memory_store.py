"""SQLite storage backend for memory index."""

import json
import sqlite3
import time

from loguru import logger

from .base_memory_store import BaseMemoryStore
from ..enumeration import MemorySource
from ..exceptions import MemoryStoreError
from ..schema import FileMetadata, MemoryChunk, MemoryIndexMeta
from ..utils.common_utils import blob_to_vector, vector_to_blob

INDEX_META_KEY = "index_meta"

# FTS5 operators and punctuation that would break a MATCH expression
FTS_SPECIAL_CHARS = '*?:^()[]{}\'"`|+-=<>!@#$%&\\/;,'


class SqliteMemoryStore(BaseMemoryStore):
    """SQLite memory storage with full-text search.

    Provides SQLite-backed persistent storage with:
    - File rows keyed by (source, path) and chunk rows with integer ids
    - Embeddings stored as little-endian float32 BLOBs
    - Full-text search (via FTS5 trigram, kept in sync by triggers)
    - A persistent embedding cache keyed by (provider, model, text hash)
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.conn: sqlite3.Connection | None = None

    @property
    def files_table_name(self) -> str:
        """Get the name of the files table for this store."""
        return f"files_{self.store_name}"

    @property
    def chunks_table_name(self) -> str:
        """Get the name of the chunks table for this store."""
        return f"chunks_{self.store_name}"

    @property
    def fts_table_name(self) -> str:
        """Get the name of the FTS table for this store."""
        return f"chunks_fts_{self.store_name}"

    @property
    def cache_table_name(self) -> str:
        """Get the name of the embedding cache table for this store."""
        return f"embedding_cache_{self.store_name}"

    @property
    def meta_table_name(self) -> str:
        """Get the name of the metadata table for this store."""
        return f"meta_{self.store_name}"

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise MemoryStoreError("Store is not started")
        return self.conn

    async def start(self) -> None:
        """Open the database and create the schema."""
        if self.conn is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            # Autocommit mode; transactions are opened explicitly with BEGIN
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            raise MemoryStoreError(f"Failed to open {self.db_path}: {e}") from e

        self._create_tables()
        logger.info(f"Opened memory store {self.store_name} at {self.db_path}")

    def _create_tables(self) -> None:
        """Create database schema."""
        cursor = self._require_conn().cursor()
        try:
            cursor.execute("BEGIN")

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.files_table_name} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    path TEXT NOT NULL,
                    source TEXT NOT NULL,
                    hash TEXT NOT NULL,
                    mtime REAL,
                    size INTEGER,
                    indexed_at INTEGER,
                    UNIQUE (source, path)
                )
            """,
            )

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.chunks_table_name} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_id INTEGER NOT NULL REFERENCES {self.files_table_name}(id) ON DELETE CASCADE,
                    path TEXT NOT NULL,
                    source TEXT NOT NULL,
                    start_line INTEGER,
                    end_line INTEGER,
                    hash TEXT,
                    model TEXT,
                    text TEXT NOT NULL,
                    embedding BLOB,
                    updated_at INTEGER
                )
            """,
            )
            cursor.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.chunks_table_name}_file ON {self.chunks_table_name}(file_id)",
            )
            cursor.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.chunks_table_name}_model ON {self.chunks_table_name}(model)",
            )

            cursor.execute(
                f"""
                CREATE VIRTUAL TABLE IF NOT EXISTS {self.fts_table_name} USING fts5(
                    text,
                    content='{self.chunks_table_name}',
                    content_rowid='id',
                    tokenize='trigram'
                )
            """,
            )
            cursor.execute(
                f"""
                CREATE TRIGGER IF NOT EXISTS {self.chunks_table_name}_ai AFTER INSERT ON {self.chunks_table_name}
                BEGIN
                    INSERT INTO {self.fts_table_name}(rowid, text) VALUES (new.id, new.text);
                END
            """,
            )
            cursor.execute(
                f"""
                CREATE TRIGGER IF NOT EXISTS {self.chunks_table_name}_ad AFTER DELETE ON {self.chunks_table_name}
                BEGIN
                    INSERT INTO {self.fts_table_name}({self.fts_table_name}, rowid, text)
                    VALUES ('delete', old.id, old.text);
                END
            """,
            )

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.cache_table_name} (
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    text_hash TEXT NOT NULL,
                    embedding BLOB NOT NULL,
                    dims INTEGER,
                    created_at INTEGER,
                    PRIMARY KEY (provider, model, text_hash)
                )
            """,
            )

            cursor.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self.meta_table_name} (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """,
            )

            cursor.execute("COMMIT")
        except Exception as e:
            if cursor.connection.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error(f"Failed to create tables: {e}")
            raise MemoryStoreError(f"Failed to create tables: {e}") from e
        finally:
            cursor.close()

    @staticmethod
    def _row_to_file(row) -> FileMetadata:
        file_id, path, source, hash_val, mtime, size, indexed_at = row
        return FileMetadata(
            id=file_id,
            path=path,
            source=MemorySource(source),
            hash=hash_val,
            mtime_ms=mtime or 0.0,
            size=size or 0,
            indexed_at=indexed_at,
        )

    async def get_file(self, path: str, source: MemorySource) -> FileMetadata | None:
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT id, path, source, hash, mtime, size, indexed_at
                FROM {self.files_table_name} WHERE path = ? AND source = ?
            """,
                (path, source.value),
            )
            row = cursor.fetchone()
            return self._row_to_file(row) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to get file {path}: {e}")
            raise MemoryStoreError(f"Failed to get file {path}: {e}") from e
        finally:
            cursor.close()

    async def list_files(self, source: MemorySource | None = None) -> list[FileMetadata]:
        cursor = self._require_conn().cursor()
        try:
            sql = f"SELECT id, path, source, hash, mtime, size, indexed_at FROM {self.files_table_name}"
            params: tuple = ()
            if source is not None:
                sql += " WHERE source = ?"
                params = (source.value,)
            cursor.execute(sql + " ORDER BY id", params)
            return [self._row_to_file(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to list files: {e}")
            raise MemoryStoreError(f"Failed to list files: {e}") from e
        finally:
            cursor.close()

    async def replace_file(
        self,
        file_meta: FileMetadata,
        chunks: list[MemoryChunk],
    ) -> tuple[list[int], list[MemoryChunk]]:
        """Insert or update a file and replace all of its chunks in one transaction."""
        cursor = self._require_conn().cursor()
        now = int(time.time() * 1000)
        source = file_meta.source.value

        try:
            cursor.execute("BEGIN")

            cursor.execute(
                f"SELECT id FROM {self.files_table_name} WHERE path = ? AND source = ?",
                (file_meta.path, source),
            )
            row = cursor.fetchone()

            old_ids: list[int] = []
            if row:
                file_id = row[0]
                cursor.execute(f"SELECT id FROM {self.chunks_table_name} WHERE file_id = ?", (file_id,))
                old_ids = [r[0] for r in cursor.fetchall()]
                cursor.execute(f"DELETE FROM {self.chunks_table_name} WHERE file_id = ?", (file_id,))
                cursor.execute(
                    f"""
                    UPDATE {self.files_table_name}
                    SET hash = ?, mtime = ?, size = ?, indexed_at = ?
                    WHERE id = ?
                """,
                    (file_meta.hash, file_meta.mtime_ms, file_meta.size, now, file_id),
                )
            else:
                cursor.execute(
                    f"""
                    INSERT INTO {self.files_table_name} (path, source, hash, mtime, size, indexed_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """,
                    (file_meta.path, source, file_meta.hash, file_meta.mtime_ms, file_meta.size, now),
                )
                file_id = cursor.lastrowid

            inserted: list[MemoryChunk] = []
            for chunk in chunks:
                cursor.execute(
                    f"""
                    INSERT INTO {self.chunks_table_name} (
                        file_id, path, source, start_line, end_line,
                        hash, model, text, embedding, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        file_id,
                        file_meta.path,
                        source,
                        chunk.start_line,
                        chunk.end_line,
                        chunk.hash,
                        chunk.model,
                        chunk.text,
                        vector_to_blob(chunk.embedding) if chunk.embedding else None,
                        now,
                    ),
                )
                inserted.append(
                    chunk.model_copy(
                        update={
                            "id": cursor.lastrowid,
                            "file_id": file_id,
                            "path": file_meta.path,
                            "source": file_meta.source,
                            "updated_at": now,
                        },
                    ),
                )

            cursor.execute("COMMIT")
            return old_ids, inserted
        except Exception as e:
            if cursor.connection.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error(f"Failed to replace file {file_meta.path}: {e}")
            raise MemoryStoreError(f"Failed to replace file {file_meta.path}: {e}") from e
        finally:
            cursor.close()

    async def delete_file(self, path: str, source: MemorySource) -> list[int]:
        """Delete file and all its chunks."""
        cursor = self._require_conn().cursor()
        try:
            cursor.execute("BEGIN")

            cursor.execute(
                f"SELECT id FROM {self.chunks_table_name} WHERE path = ? AND source = ?",
                (path, source.value),
            )
            chunk_ids = [row[0] for row in cursor.fetchall()]

            # Chunks first so the FTS delete trigger sees every row
            cursor.execute(
                f"DELETE FROM {self.chunks_table_name} WHERE path = ? AND source = ?",
                (path, source.value),
            )
            cursor.execute(
                f"DELETE FROM {self.files_table_name} WHERE path = ? AND source = ?",
                (path, source.value),
            )

            cursor.execute("COMMIT")
            return chunk_ids
        except Exception as e:
            if cursor.connection.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error(f"Failed to delete file {path}: {e}")
            raise MemoryStoreError(f"Failed to delete file {path}: {e}") from e
        finally:
            cursor.close()

    async def get_chunks(self, chunk_ids: list[int]) -> dict[int, MemoryChunk]:
        if not chunk_ids:
            return {}

        cursor = self._require_conn().cursor()
        try:
            placeholders = ",".join("?" * len(chunk_ids))
            cursor.execute(
                f"""
                SELECT id, file_id, path, source, start_line, end_line, text, hash, model, updated_at
                FROM {self.chunks_table_name} WHERE id IN ({placeholders})
            """,
                list(chunk_ids),
            )

            chunks = {}
            for chunk_id, file_id, path, src, start, end, text, hash_val, model, updated_at in cursor.fetchall():
                chunks[chunk_id] = MemoryChunk(
                    id=chunk_id,
                    file_id=file_id,
                    path=path,
                    source=MemorySource(src),
                    start_line=start,
                    end_line=end,
                    text=text,
                    hash=hash_val or "",
                    model=model or "",
                    updated_at=updated_at,
                )
            return chunks
        except sqlite3.Error as e:
            logger.error(f"Failed to get chunks: {e}")
            raise MemoryStoreError(f"Failed to get chunks: {e}") from e
        finally:
            cursor.close()

    async def get_file_chunks(self, path: str, source: MemorySource) -> list[MemoryChunk]:
        """Get all chunks for a file."""
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT id, file_id, start_line, end_line, text, hash, model, embedding, updated_at
                FROM {self.chunks_table_name} WHERE path = ? AND source = ?
                ORDER BY start_line, id
            """,
                (path, source.value),
            )

            chunks = []
            for chunk_id, file_id, start, end, text, hash_val, model, blob, updated_at in cursor.fetchall():
                chunks.append(
                    MemoryChunk(
                        id=chunk_id,
                        file_id=file_id,
                        path=path,
                        source=source,
                        start_line=start,
                        end_line=end,
                        text=text,
                        hash=hash_val or "",
                        model=model or "",
                        embedding=blob_to_vector(blob) if blob else None,
                        updated_at=updated_at,
                    ),
                )
            return chunks
        except sqlite3.Error as e:
            logger.error(f"Failed to get file chunks for {path}: {e}")
            raise MemoryStoreError(f"Failed to get file chunks for {path}: {e}") from e
        finally:
            cursor.close()

    async def list_embeddings(self, model_key: str) -> list[tuple[int, list[float], MemorySource]]:
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT id, embedding, source FROM {self.chunks_table_name}
                WHERE model = ? AND embedding IS NOT NULL
                ORDER BY id
            """,
                (model_key,),
            )
            return [(chunk_id, blob_to_vector(blob), MemorySource(src)) for chunk_id, blob, src in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"Failed to list embeddings: {e}")
            raise MemoryStoreError(f"Failed to list embeddings: {e}") from e
        finally:
            cursor.close()

    @staticmethod
    def _sanitize_fts_query(query: str) -> str:
        """Sanitize query string for FTS5 search.

        Replaces FTS5 operators and punctuation with spaces and normalises
        whitespace, so user input can never form a MATCH syntax error.

        Args:
            query: Raw query string

        Returns:
            Sanitized query string safe for FTS5
        """
        if not query:
            return ""

        cleaned = query
        for char in FTS_SPECIAL_CHARS:
            cleaned = cleaned.replace(char, " ")

        return " ".join(cleaned.split())

    async def text_search(
        self,
        query: str,
        limit: int,
        sources: list[MemorySource] | None = None,
    ) -> list[tuple[int, float]]:
        """Perform keyword search.

        Strategy:
        - FTS5 trigram (fast path): over the terms with at least 3 characters,
          the trigram minimum, ranked by negated bm25.
        - LIKE (fallback): when no term is long enough or FTS finds nothing,
          scored by the share of query terms found plus a phrase bonus.
        """
        cleaned = self._sanitize_fts_query(query)
        words = cleaned.split()
        if not words or limit <= 0:
            return []

        long_words = [w for w in words if len(w) >= 3]
        if long_words:
            results = self._fts_trigram_search(long_words, limit, sources)
            if results:
                return results

        return self._like_search(cleaned, words, limit, sources)

    @staticmethod
    def _source_filter(column: str, sources: list[MemorySource] | None) -> tuple[str, list]:
        if not sources:
            return "", []
        placeholders = ",".join("?" * len(sources))
        return f" AND {column} IN ({placeholders})", [s.value for s in sources]

    def _fts_trigram_search(
        self,
        words: list[str],
        limit: int,
        sources: list[MemorySource] | None = None,
    ) -> list[tuple[int, float]]:
        """FTS5 trigram search. All terms must be >= 3 characters."""
        fts_query = " OR ".join('"' + w.replace('"', '""') + '"' for w in words)
        source_filter, source_params = self._source_filter("c.source", sources)

        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT c.id, -bm25({self.fts_table_name}) AS score
                FROM {self.fts_table_name}
                JOIN {self.chunks_table_name} c ON c.id = {self.fts_table_name}.rowid
                WHERE {self.fts_table_name} MATCH ?{source_filter}
                ORDER BY score DESC, c.id ASC
                LIMIT ?
            """,
                [fts_query, *source_params, limit],
            )
            return [(chunk_id, float(score)) for chunk_id, score in cursor.fetchall()]
        except sqlite3.Error as e:
            logger.error(f"FTS trigram search failed: {e}")
            raise MemoryStoreError(f"FTS trigram search failed: {e}") from e
        finally:
            cursor.close()

    def _like_search(
        self,
        phrase: str,
        words: list[str],
        limit: int,
        sources: list[MemorySource] | None = None,
    ) -> list[tuple[int, float]]:
        """LIKE-based substring search with Python-side relevance scoring.

        Handles any term length and all languages (CJK, Latin, etc.).
        """
        like_clauses = " OR ".join("c.text LIKE ?" for _ in words)
        source_filter, source_params = self._source_filter("c.source", sources)
        params = [f"%{w}%" for w in words] + source_params
        # Fetch extra candidates for re-ranking in Python
        params.append(min(limit * 3, 200))

        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT c.id, c.text FROM {self.chunks_table_name} c
                WHERE ({like_clauses}){source_filter}
                ORDER BY c.id
                LIMIT ?
            """,
                params,
            )

            phrase_lower = phrase.lower()
            words_lower = [w.lower() for w in words]
            n_words = len(words)

            results = []
            for chunk_id, text in cursor.fetchall():
                text_lower = text.lower()
                match_count = sum(1 for w in words_lower if w in text_lower)
                if not match_count:
                    continue
                base_score = match_count / n_words
                phrase_bonus = 0.2 if n_words > 1 and phrase_lower in text_lower else 0.0
                results.append((chunk_id, min(1.0, base_score * 0.8 + phrase_bonus)))

            results.sort(key=lambda r: (-r[1], r[0]))
            return results[:limit]
        except sqlite3.Error as e:
            logger.error(f"LIKE search failed: {e}")
            raise MemoryStoreError(f"LIKE search failed: {e}") from e
        finally:
            cursor.close()

    async def get_cached_embedding(self, provider: str, model: str, text_hash: str) -> list[float] | None:
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                SELECT embedding FROM {self.cache_table_name}
                WHERE provider = ? AND model = ? AND text_hash = ?
            """,
                (provider, model, text_hash),
            )
            row = cursor.fetchone()
            return blob_to_vector(row[0]) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to read embedding cache: {e}")
            raise MemoryStoreError(f"Failed to read embedding cache: {e}") from e
        finally:
            cursor.close()

    async def put_cached_embedding(self, provider: str, model: str, text_hash: str, embedding: list[float]):
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"""
                INSERT OR REPLACE INTO {self.cache_table_name}
                    (provider, model, text_hash, embedding, dims, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (provider, model, text_hash, vector_to_blob(embedding), len(embedding), int(time.time() * 1000)),
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to write embedding cache: {e}")
            raise MemoryStoreError(f"Failed to write embedding cache: {e}") from e
        finally:
            cursor.close()

    async def get_index_meta(self) -> MemoryIndexMeta | None:
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(f"SELECT value FROM {self.meta_table_name} WHERE key = ?", (INDEX_META_KEY,))
            row = cursor.fetchone()
            return MemoryIndexMeta.model_validate(json.loads(row[0])) if row else None
        except sqlite3.Error as e:
            logger.error(f"Failed to read index meta: {e}")
            raise MemoryStoreError(f"Failed to read index meta: {e}") from e
        finally:
            cursor.close()

    async def set_index_meta(self, meta: MemoryIndexMeta):
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(
                f"INSERT OR REPLACE INTO {self.meta_table_name} (key, value) VALUES (?, ?)",
                (INDEX_META_KEY, meta.model_dump_json()),
            )
        except sqlite3.Error as e:
            logger.error(f"Failed to write index meta: {e}")
            raise MemoryStoreError(f"Failed to write index meta: {e}") from e
        finally:
            cursor.close()

    async def get_stats(self) -> dict[str, int]:
        cursor = self._require_conn().cursor()
        try:
            cursor.execute(f"SELECT source, COUNT(*) FROM {self.files_table_name} GROUP BY source")
            per_source = dict(cursor.fetchall())
            cursor.execute(f"SELECT COUNT(*) FROM {self.chunks_table_name}")
            total_chunks = cursor.fetchone()[0]
            cursor.execute(f"SELECT COUNT(*) FROM {self.cache_table_name}")
            cached_embeddings = cursor.fetchone()[0]
        except sqlite3.Error as e:
            logger.error(f"Failed to read store stats: {e}")
            raise MemoryStoreError(f"Failed to read store stats: {e}") from e
        finally:
            cursor.close()

        memory_files = per_source.get(MemorySource.MEMORY.value, 0)
        session_files = per_source.get(MemorySource.SESSIONS.value, 0)
        return {
            "memory_files": memory_files,
            "session_files": session_files,
            "total_files": memory_files + session_files,
            "total_chunks": total_chunks,
            "cached_embeddings": cached_embeddings,
            "database_size_bytes": self.db_path.stat().st_size if self.db_path.exists() else 0,
        }

    async def clear_all(self):
        """Clear all indexed data."""
        cursor = self._require_conn().cursor()
        try:
            cursor.execute("BEGIN")
            cursor.execute(f"DELETE FROM {self.chunks_table_name}")
            cursor.execute(f"DELETE FROM {self.files_table_name}")
            cursor.execute(f"DELETE FROM {self.cache_table_name}")
            cursor.execute(f"DELETE FROM {self.meta_table_name}")
            cursor.execute("COMMIT")
        except Exception as e:
            if cursor.connection.in_transaction:
                cursor.execute("ROLLBACK")
            logger.error(f"Failed to clear all data: {e}")
            raise MemoryStoreError(f"Failed to clear all data: {e}") from e
        finally:
            cursor.close()

    async def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
