"""Tests for the SQLite content store."""

import pytest

from memdex.core.enumeration import MemorySource
from memdex.core.exceptions import MemoryStoreError
from memdex.core.memory_store import SqliteMemoryStore
from memdex.core.schema import FileMetadata, MemoryChunk, MemoryIndexMeta
from memdex.core.utils.common_utils import hash_text, to_float32


def _chunk(text: str, line: int, source: MemorySource = MemorySource.MEMORY, path: str = "a.md") -> MemoryChunk:
    return MemoryChunk(
        path=path,
        source=source,
        start_line=line,
        end_line=line,
        text=text,
        hash=hash_text(text),
        model="fake/m/3",
        embedding=to_float32([float(line), 0.5, -1.0]),
    )


async def test_start_creates_tables(store: SqliteMemoryStore):
    cursor = store.conn.cursor()
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
    tables = [row[0] for row in cursor.fetchall()]
    cursor.close()

    assert store.files_table_name in tables
    assert store.chunks_table_name in tables
    assert store.fts_table_name in tables
    assert store.cache_table_name in tables
    assert store.meta_table_name in tables


def test_invalid_store_name(tmp_path):
    with pytest.raises(ValueError):
        SqliteMemoryStore(store_name="bad-name; DROP", db_path=tmp_path / "x.db")


async def test_replace_file_assigns_ids_and_round_trips_embeddings(store: SqliteMemoryStore):
    file_meta = FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="h1", size=10)
    chunks = [_chunk("first chunk text", 1), _chunk("second chunk text", 2)]

    old_ids, inserted = await store.replace_file(file_meta, chunks)

    assert old_ids == []
    assert [c.id for c in inserted] == sorted(c.id for c in inserted)
    stored = await store.get_file_chunks("a.md", MemorySource.MEMORY)
    assert [c.id for c in stored] == [c.id for c in inserted]
    assert stored[0].embedding == chunks[0].embedding
    assert stored[1].text == "second chunk text"

    file_row = await store.get_file("a.md", MemorySource.MEMORY)
    assert file_row.hash == "h1"
    assert file_row.indexed_at is not None


async def test_replace_file_swaps_whole_chunk_set(store: SqliteMemoryStore):
    file_meta = FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="h1")
    _, first = await store.replace_file(file_meta, [_chunk("one", 1), _chunk("two", 2)])

    file_meta.hash = "h2"
    old_ids, second = await store.replace_file(file_meta, [_chunk("three", 1)])

    assert sorted(old_ids) == sorted(c.id for c in first)
    remaining = await store.get_file_chunks("a.md", MemorySource.MEMORY)
    assert [c.text for c in remaining] == ["three"]
    # Ids are never reused
    assert second[0].id > max(c.id for c in first)
    assert await store.get_chunks([c.id for c in first]) == {}
    assert (await store.get_file("a.md", MemorySource.MEMORY)).hash == "h2"


async def test_same_path_in_both_sources_is_independent(store: SqliteMemoryStore):
    await store.replace_file(
        FileMetadata(path="x.json", source=MemorySource.MEMORY, hash="m"),
        [_chunk("memory text", 1, path="x.json")],
    )
    await store.replace_file(
        FileMetadata(path="x.json", source=MemorySource.SESSIONS, hash="s"),
        [_chunk("session text", 1, MemorySource.SESSIONS, path="x.json")],
    )

    assert len(await store.list_files()) == 2
    assert [f.source for f in await store.list_files(MemorySource.SESSIONS)] == [MemorySource.SESSIONS]

    removed = await store.delete_file("x.json", MemorySource.MEMORY)
    assert len(removed) == 1
    assert await store.get_file("x.json", MemorySource.MEMORY) is None
    assert await store.get_file("x.json", MemorySource.SESSIONS) is not None


async def test_text_search_ranks_and_filters(store: SqliteMemoryStore):
    _, mem = await store.replace_file(
        FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="a"),
        [_chunk("the deployment pipeline uses docker", 1), _chunk("lunch was pasta", 2)],
    )
    _, ses = await store.replace_file(
        FileMetadata(path="s.json", source=MemorySource.SESSIONS, hash="s"),
        [_chunk("we discussed the docker deployment", 1, MemorySource.SESSIONS, path="s.json")],
    )

    results = await store.text_search("docker deployment", limit=10)
    ids = [chunk_id for chunk_id, _ in results]
    assert set(ids) == {mem[0].id, ses[0].id}
    assert all(score > 0 for _, score in results)

    memory_only = await store.text_search("docker", limit=10, sources=[MemorySource.MEMORY])
    assert [chunk_id for chunk_id, _ in memory_only] == [mem[0].id]


async def test_text_search_is_safe_with_special_characters(store: SqliteMemoryStore):
    await store.replace_file(
        FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="a"),
        [_chunk('config "value" AND (other) OR NOT*', 1)],
    )

    for query in ['"unbalanced', "a AND (b", "NOT*", "-:^", "value)"]:
        await store.text_search(query, limit=5)

    assert await store.text_search("value", limit=5)


async def test_text_search_short_terms_fall_back_to_like(store: SqliteMemoryStore):
    _, inserted = await store.replace_file(
        FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="a"),
        [_chunk("go is a language", 1), _chunk("nothing here", 2)],
    )

    results = await store.text_search("go", limit=5)

    assert [chunk_id for chunk_id, _ in results] == [inserted[0].id]


async def test_fts_follows_chunk_deletes(store: SqliteMemoryStore):
    file_meta = FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="a")
    await store.replace_file(file_meta, [_chunk("obsolete wording", 1)])
    await store.replace_file(file_meta, [_chunk("fresh wording", 1)])

    assert await store.text_search("obsolete", limit=5) == []
    assert len(await store.text_search("fresh", limit=5)) == 1


async def test_embedding_cache_and_meta(store: SqliteMemoryStore):
    vector = to_float32([0.25, -0.5, 1.0])

    assert await store.get_cached_embedding("fake", "fake/m/3", "h") is None
    await store.put_cached_embedding("fake", "fake/m/3", "h", vector)
    assert await store.get_cached_embedding("fake", "fake/m/3", "h") == vector
    assert await store.get_cached_embedding("fake", "other/m/3", "h") is None

    assert await store.get_index_meta() is None
    meta = MemoryIndexMeta(provider="fake", model="m", chunk_tokens=512, chunk_overlap=50, vector_dims=3)
    await store.set_index_meta(meta)
    assert await store.get_index_meta() == meta


async def test_stats_and_clear_all(store: SqliteMemoryStore):
    await store.replace_file(
        FileMetadata(path="a.md", source=MemorySource.MEMORY, hash="a"),
        [_chunk("one", 1), _chunk("two", 2)],
    )
    await store.put_cached_embedding("fake", "fake/m/3", "h", [1.0, 2.0, 3.0])

    stats = await store.get_stats()
    assert stats["memory_files"] == 1
    assert stats["session_files"] == 0
    assert stats["total_chunks"] == 2
    assert stats["cached_embeddings"] == 1
    assert stats["database_size_bytes"] > 0

    await store.clear_all()

    stats = await store.get_stats()
    assert stats["total_files"] == 0
    assert stats["total_chunks"] == 0
    assert stats["cached_embeddings"] == 0
    assert await store.text_search("one", limit=5) == []


async def test_operations_before_start_fail(tmp_path):
    store = SqliteMemoryStore(store_name="late", db_path=tmp_path / "late.db")

    with pytest.raises(MemoryStoreError):
        await store.get_file("a.md", MemorySource.MEMORY)
